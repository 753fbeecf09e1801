"""Built-in action handlers, keyed by step ``action_type``."""

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.handlers.conditional import ConditionalActionHandler
from src.approvals.actions.handlers.decision import (
    DecisionActionHandler,
    DecisionResolver,
    get_decision_resolver,
    reset_decision_resolvers,
    set_decision_resolver,
)
from src.approvals.actions.handlers.delay import DelayActionHandler
from src.approvals.actions.handlers.email import EmailActionHandler
from src.approvals.actions.handlers.http import HttpActionHandler
from src.approvals.actions.handlers.join import JoinActionHandler
from src.approvals.actions.handlers.parallel import ParallelActionHandler
from src.approvals.actions.handlers.script import ScriptActionHandler
from src.approvals.actions.handlers.sub_workflow import SubWorkflowActionHandler

BUILTIN_HANDLERS: dict[str, type[ActionHandler]] = {
    "email": EmailActionHandler,
    "delay": DelayActionHandler,
    "conditional": ConditionalActionHandler,
    "decision": DecisionActionHandler,
    "script": ScriptActionHandler,
    "http": HttpActionHandler,
    "sub_workflow": SubWorkflowActionHandler,
    "parallel": ParallelActionHandler,
    "join": JoinActionHandler,
}

__all__ = [
    "BUILTIN_HANDLERS",
    "ConditionalActionHandler",
    "DecisionActionHandler",
    "DecisionResolver",
    "DelayActionHandler",
    "EmailActionHandler",
    "HttpActionHandler",
    "JoinActionHandler",
    "ParallelActionHandler",
    "ScriptActionHandler",
    "SubWorkflowActionHandler",
    "get_decision_resolver",
    "reset_decision_resolvers",
    "set_decision_resolver",
]
