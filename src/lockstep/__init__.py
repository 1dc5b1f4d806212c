# Public API

from lockstep.client.phases import AnimatedField as AnimatedField
from lockstep.client.synced import SyncedField as SyncedField
from lockstep.client.synced import SyncedFieldStore as SyncedFieldStore
from lockstep.codegen.actions import Action as Action
from lockstep.codegen.actions import SetOp as SetOp
from lockstep.codegen.actions import UpdateOp as UpdateOp
from lockstep.codegen.build import BuildReport as BuildReport
from lockstep.codegen.build import build as build
from lockstep.codegen.generator import Artifact as Artifact
from lockstep.codegen.generator import generate as generate
from lockstep.codegen.writer import ArtifactWriter as ArtifactWriter
from lockstep.codegen.writer import BuildConfig as BuildConfig
from lockstep.errors import BuildError as BuildError
from lockstep.errors import CycleError as CycleError
from lockstep.errors import DanglingReferenceError as DanglingReferenceError
from lockstep.errors import InlineRecursionError as InlineRecursionError
from lockstep.errors import InvalidFieldError as InvalidFieldError
from lockstep.errors import LockstepError as LockstepError
from lockstep.errors import errors as errors
from lockstep.graph.builder import DependencyGraph as DependencyGraph
from lockstep.graph.builder import build_graph as build_graph
from lockstep.graph.fields import AnimatedConfig as AnimatedConfig
from lockstep.graph.fields import ReactiveField as ReactiveField
from lockstep.graph.runtime import GraphRuntime as GraphRuntime
from lockstep.rx.evaluator import evaluate as evaluate
from lockstep.rx.expr import Rx as Rx
from lockstep.rx.expr import rx as rx
from lockstep.rx.inliner import InlineFn as InlineFn
from lockstep.rx.transpiler import compile_rx as compile_rx
from lockstep.rx.transpiler import validate as validate
from lockstep.unit import Unit as Unit
from lockstep.version import __version__ as __version__
