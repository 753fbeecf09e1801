"""Fluent hook registration for one (topic, action).

    registry.workflow("Post", "update")
        .on_complete(apply_changes)
        .on_reject(notify_author)
        .before_transition_to("legal_review", require_attachment)
        .authorize_with(is_editor)
"""

from typing import TYPE_CHECKING, Self

from src.approvals.hooks.registry import WILDCARD, Callback, StepRef

if TYPE_CHECKING:
    from src.approvals.hooks.registry import HookRegistry


class HookBuilder:
    def __init__(self, registry: "HookRegistry", topic: str = WILDCARD, action: str = WILDCARD):
        self.registry = registry
        self.topic = topic
        self.action = action

    def before_trigger(self, callback: Callback) -> Self:
        self.registry.before_trigger(self.topic, self.action, callback)
        return self

    def after_trigger(self, callback: Callback) -> Self:
        self.registry.after_trigger(self.topic, self.action, callback)
        return self

    def on_complete(self, callback: Callback) -> Self:
        self.registry.on_complete(self.topic, self.action, callback)
        return self

    def on_reject(self, callback: Callback) -> Self:
        self.registry.on_reject(self.topic, self.action, callback)
        return self

    def before_transition_to(self, step: StepRef, callback: Callback) -> Self:
        self.registry.before_transition_to(step, callback, topic=self.topic, action=self.action)
        return self

    def after_transition_to(self, step: StepRef, callback: Callback) -> Self:
        self.registry.after_transition_to(step, callback, topic=self.topic, action=self.action)
        return self

    def on_step_activated(self, step: StepRef, callback: Callback) -> Self:
        self.registry.on_step_activated(step, callback, topic=self.topic, action=self.action)
        return self

    def on_transition(self, from_step: StepRef, to_step: StepRef, callback: Callback) -> Self:
        self.registry.on_transition(from_step, to_step, callback, topic=self.topic, action=self.action)
        return self

    def authorize_with(self, callback: Callback) -> Self:
        self.registry.authorize_with(callback, topic=self.topic, action=self.action)
        return self

    def exempt_with(self, callback: Callback) -> Self:
        self.registry.exempt_with(callback, topic=self.topic, action=self.action)
        return self

    def assign_with(self, callback: Callback) -> Self:
        self.registry.assign_with(callback, topic=self.topic, action=self.action)
        return self
