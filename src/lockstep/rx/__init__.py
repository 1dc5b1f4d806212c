from lockstep.rx.builtins import BUILTINS as BUILTINS
from lockstep.rx.builtins import Builtin as Builtin
from lockstep.rx.evaluator import EvaluationError as EvaluationError
from lockstep.rx.evaluator import evaluate as evaluate
from lockstep.rx.expr import STATE_PREFIX as STATE_PREFIX
from lockstep.rx.expr import Rx as Rx
from lockstep.rx.expr import collect_deps as collect_deps
from lockstep.rx.expr import parse as parse
from lockstep.rx.expr import rx as rx
from lockstep.rx.expr import to_source as to_source
from lockstep.rx.inliner import FunctionTable as FunctionTable
from lockstep.rx.inliner import InlineFn as InlineFn
from lockstep.rx.inliner import inline as inline
from lockstep.rx.inliner import inline_rx as inline_rx
from lockstep.rx.inliner import inline_source as inline_source
from lockstep.rx.transpiler import CompiledExpr as CompiledExpr
from lockstep.rx.transpiler import TranspileError as TranspileError
from lockstep.rx.transpiler import ValidationResult as ValidationResult
from lockstep.rx.transpiler import compile_rx as compile_rx
from lockstep.rx.transpiler import transpile as transpile
from lockstep.rx.transpiler import validate as validate
