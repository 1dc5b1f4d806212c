from lockstep.graph.animated import PHASES as PHASES
from lockstep.graph.animated import expand_animated as expand_animated
from lockstep.graph.animated import phase_fields as phase_fields
from lockstep.graph.builder import DependencyGraph as DependencyGraph
from lockstep.graph.builder import build_graph as build_graph
from lockstep.graph.builder import find_cycle as find_cycle
from lockstep.graph.builder import topological_order as topological_order
from lockstep.graph.fields import AnimatedConfig as AnimatedConfig
from lockstep.graph.fields import ReactiveField as ReactiveField
from lockstep.graph.fields import derived as derived
from lockstep.graph.fields import state as state
from lockstep.graph.runtime import AsyncResult as AsyncResult
from lockstep.graph.runtime import GraphRuntime as GraphRuntime
