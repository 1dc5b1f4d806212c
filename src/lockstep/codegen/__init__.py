from lockstep.codegen.actions import Action as Action
from lockstep.codegen.actions import SetOp as SetOp
from lockstep.codegen.actions import UpdateOp as UpdateOp
from lockstep.codegen.actions import compile_action as compile_action
from lockstep.codegen.generator import Artifact as Artifact
from lockstep.codegen.generator import generate as generate
from lockstep.codegen.writer import ArtifactWriter as ArtifactWriter
from lockstep.codegen.writer import BuildConfig as BuildConfig
