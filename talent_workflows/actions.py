"""
Action Dispatcher Module

Runs the side effects attached to transitions. Built-in actions (field updates
and assignment) are applied to the instance while the transition commits;
everything else goes through a registered handler after commit, one action at
a time, each isolated from the others and bounded by a timeout. A failing or
missing handler never undoes a transition: it is logged and published on the
event channel.
"""

import time
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

import httpx

from .errors import ActionDispatchError, ValidationError
from .events import EventDispatcher, WorkflowEvent
from .logging_config import get_logger, log_action
from .models import (
    ActionType, BUILTIN_ACTION_TYPES, WorkflowAction, WorkflowInstance,
    is_custom_action_tag, utc_now
)
from .storage import StorageInterface


class ActionHandler(ABC):
    """Abstract base class for side-effect handlers"""

    @abstractmethod
    def execute(self, action: WorkflowAction, instance: WorkflowInstance) -> bool:
        """Perform the action. Returns True if successful; False or raising means failure."""
        pass


class EmailActionHandler(ActionHandler):
    """Hands workflow emails to an injected sender; logs them when no sender is configured"""

    def __init__(self, sender: Optional[Callable[[Dict[str, Any]], Any]] = None):
        self.sender = sender
        self.logger = get_logger("talent_workflows.actions.email")

    def execute(self, action: WorkflowAction, instance: WorkflowInstance) -> bool:
        message = {
            "recipients": action.config.get("recipients", []),
            "template": action.config.get("template"),
            "subject": action.config.get("subject") or action.config.get("template"),
            "body": action.config.get("body"),
            "instance_id": instance.id,
            "workflow_id": instance.workflow_id,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "current_state": instance.current_state,
            "metadata": instance.metadata
        }

        if self.sender is None:
            log_action(self.logger, "info", f"Email would be sent: {message['subject']}",
                       action="email", workflow_id=instance.workflow_id, instance_id=instance.id,
                       extra={"recipients": message["recipients"]})
            return True

        return self.sender(message) is not False


class NotificationActionHandler(ActionHandler):
    """In-app notification handler using storage"""

    def __init__(self, storage: StorageInterface, table: str = "workflow_notifications"):
        self.storage = storage
        self.table = table

    def execute(self, action: WorkflowAction, instance: WorkflowInstance) -> bool:
        now = utc_now()
        notification = {
            "id": str(uuid.uuid4()),
            "created_at": now.isoformat(),
            "title": action.config.get("title") or action.config.get("template"),
            "message": action.config.get("message") or
                       f"Workflow transitioned to {instance.current_state}",
            "recipients": action.config.get("recipients", []),
            "type": "workflow",
            "read": False,
            "instance_id": instance.id,
            "workflow_id": instance.workflow_id,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id
        }
        self.storage.save(self.table, notification["id"], notification)
        return True


class WebhookActionHandler(ActionHandler):
    """Webhook handler for external integrations"""

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 5.0):
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self.logger = get_logger("talent_workflows.actions.webhook")

    def execute(self, action: WorkflowAction, instance: WorkflowInstance) -> bool:
        url = action.config.get("webhook_url")
        if not url:
            self.logger.warning(f"Webhook action {action.id} has no webhook_url")
            return False

        payload = {
            "event": "workflow.transition",
            "instance_id": instance.id,
            "workflow_id": instance.workflow_id,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "current_state": instance.current_state,
            "previous_state": instance.previous_state,
            "timestamp": utc_now().isoformat(),
            "metadata": instance.metadata
        }
        headers = {"Content-Type": "application/json"}
        headers.update(action.config.get("headers") or {})

        response = self._client.request(
            action.config.get("method", "POST"),
            url,
            json=payload,
            headers=headers
        )

        if response.is_success:
            return True

        self.logger.warning(f"Webhook {url} returned {response.status_code}")
        return False

    def close(self):
        """Close the HTTP client if this handler created it"""
        if self._owns_client:
            self._client.close()


class TaskActionHandler(ActionHandler):
    """Creates follow-up tasks in storage"""

    def __init__(self, storage: StorageInterface, table: str = "workflow_tasks"):
        self.storage = storage
        self.table = table

    def execute(self, action: WorkflowAction, instance: WorkflowInstance) -> bool:
        task = {
            "id": str(uuid.uuid4()),
            "created_at": utc_now().isoformat(),
            "title": action.config.get("title", ""),
            "description": action.config.get("description", ""),
            "assigned_to": action.config.get("assigned_to") or instance.assigned_to,
            "due_date": action.config.get("due_date"),
            "priority": action.config.get("priority", "normal"),
            "status": "open",
            "source": "workflow",
            "instance_id": instance.id,
            "workflow_id": instance.workflow_id,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id
        }
        self.storage.save(self.table, task["id"], task)
        return True


class CallableActionHandler(ActionHandler):
    """Adapts a plain function ``func(action, instance)`` to the handler contract"""

    def __init__(self, func: Callable[[WorkflowAction, WorkflowInstance], Any]):
        self.func = func

    def execute(self, action: WorkflowAction, instance: WorkflowInstance) -> bool:
        # None counts as success so simple functions need not return anything
        return self.func(action, instance) is not False


@dataclass
class ActionResult:
    """Outcome of dispatching one action"""
    action_id: str
    action_type: str
    success: bool
    skipped: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type,
            "success": self.success,
            "skipped": self.skipped,
            "error": self.error,
            "duration_ms": self.duration_ms
        }


HandlerLike = Union[ActionHandler, Callable[[WorkflowAction, WorkflowInstance], Any]]


class ActionDispatcher:
    """Registry of action handlers and the runner for external side effects"""

    def __init__(self, event_dispatcher: Optional[EventDispatcher] = None,
                 timeout_seconds: float = 10.0, max_workers: int = 4):
        self.event_dispatcher = event_dispatcher
        self.timeout_seconds = timeout_seconds
        self._handlers: Dict[str, ActionHandler] = {}
        self._lock = RLock()
        self._pending: Set[Future] = set()
        self._closed = False
        # Handler calls run on their own pool so a stuck handler can be abandoned
        self._handler_pool = ThreadPoolExecutor(max_workers=max_workers,
                                                thread_name_prefix="workflow-action")
        self._background_pool = ThreadPoolExecutor(max_workers=max_workers,
                                                   thread_name_prefix="workflow-dispatch")
        self.logger = get_logger("talent_workflows.actions")

    # Handler registry

    def register(self, action_type: Union[ActionType, str], handler: HandlerLike) -> None:
        """Register or replace the handler for an external action tag"""
        tag = action_type.value if isinstance(action_type, ActionType) else action_type
        known = None
        try:
            known = ActionType(tag)
        except ValueError:
            if not is_custom_action_tag(tag):
                raise ValidationError(f"Unknown action type: {tag}", {"action_type": tag})
        if known in BUILTIN_ACTION_TYPES:
            raise ValidationError(f"Built-in action {tag} cannot have a handler",
                                  {"action_type": tag})

        if not isinstance(handler, ActionHandler):
            if not callable(handler):
                raise ValidationError(f"Handler for {tag} is not callable", {"action_type": tag})
            handler = CallableActionHandler(handler)

        with self._lock:
            replaced = tag in self._handlers
            self._handlers[tag] = handler
        self.logger.debug(f"{'Replaced' if replaced else 'Registered'} handler for {tag}")

    def unregister(self, action_type: Union[ActionType, str]) -> bool:
        tag = action_type.value if isinstance(action_type, ActionType) else action_type
        with self._lock:
            return self._handlers.pop(tag, None) is not None

    def get_handler(self, action_type: str) -> Optional[ActionHandler]:
        with self._lock:
            return self._handlers.get(action_type)

    def registered_types(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)

    # Built-in actions

    def apply_builtin(self, action: WorkflowAction, instance: WorkflowInstance) -> None:
        """Apply update_field / assign_user directly to the (working copy of the) instance"""
        action_type = action.action_type

        if action_type == ActionType.UPDATE_FIELD:
            instance.metadata[action.config["field"]] = action.config.get("value")
            self.logger.debug(f"Set {action.config['field']} on instance {instance.id}")
        elif action_type == ActionType.ASSIGN_USER:
            instance.assigned_to = action.config["user_id"]
            instance.assigned_to_name = action.config.get("user_name")
            self.logger.debug(f"Assigned instance {instance.id} to {instance.assigned_to}")
        else:
            raise ValidationError(f"{action.type} is not a built-in action",
                                  {"action_id": action.id, "action_type": action.type})

    # External actions

    def dispatch(self, action: WorkflowAction, instance: WorkflowInstance) -> ActionResult:
        """
        Run one external action through its handler.

        Never raises: a missing handler, or a call still queued when the
        timeout expires, is a skip. A handler that raises, returns False, or
        runs past the timeout is a failure.
        """
        handler = self.get_handler(action.type)
        if handler is None:
            return self._skip(action, instance, "no handler registered",
                              f"No handler registered for action type {action.type}")

        start = time.monotonic()
        error: Optional[ActionDispatchError] = None
        try:
            future = self._handler_pool.submit(handler.execute, action, instance.snapshot())
            succeeded = future.result(timeout=self.timeout_seconds)
            if succeeded is False:
                error = ActionDispatchError(f"Action {action.id} ({action.type}) reported failure",
                                            action.id, action.type, instance.id)
        except FutureTimeoutError:
            if future.cancel():
                return self._skip(action, instance, "not started within timeout",
                                  f"Action {action.id} ({action.type}) not started "
                                  f"within {self.timeout_seconds}s")
            error = ActionDispatchError(
                f"Action {action.id} ({action.type}) timed out after {self.timeout_seconds}s",
                action.id, action.type, instance.id, {"timeout_seconds": self.timeout_seconds})
        except Exception as e:
            error = ActionDispatchError(f"Action {action.id} ({action.type}) failed: {e}",
                                        action.id, action.type, instance.id,
                                        {"exception": type(e).__name__})
        duration_ms = (time.monotonic() - start) * 1000

        if error is not None:
            log_action(self.logger, "error", error.message, action=action.type,
                       workflow_id=instance.workflow_id, instance_id=instance.id,
                       extra=error.details)
            result = ActionResult(action.id, action.type, success=False,
                                  error=error.message, duration_ms=duration_ms)
            self._publish(WorkflowEvent.ACTION_FAILED, instance, result)
            return result

        log_action(self.logger, "info", f"Executed action {action.id} ({action.type})",
                   action=action.type, workflow_id=instance.workflow_id, instance_id=instance.id)
        result = ActionResult(action.id, action.type, success=True, duration_ms=duration_ms)
        self._publish(WorkflowEvent.ACTION_EXECUTED, instance, result)
        return result

    def dispatch_all(self, actions: Iterable[WorkflowAction],
                     instance: WorkflowInstance) -> List[ActionResult]:
        """Dispatch external actions in declared order; built-ins are skipped here"""
        return [self.dispatch(action, instance) for action in actions if not action.is_builtin]

    def submit(self, actions: Iterable[WorkflowAction], instance: WorkflowInstance) -> Future:
        """Dispatch in the background; the returned future resolves to the results"""
        actions = list(actions)
        with self._lock:
            if not self._closed:
                future = self._background_pool.submit(self.dispatch_all, actions, instance)
                self._pending.add(future)
                future.add_done_callback(self._discard_pending)
                return future

        # Shut down: the transition is already committed, so report instead of raising
        future = Future()
        future.set_result([
            self._skip(action, instance, "dispatcher is shut down",
                       f"Action {action.id} ({action.type}) skipped, dispatcher is shut down")
            for action in actions if not action.is_builtin
        ])
        return future

    def _discard_pending(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until background dispatches finish; False if some are still running"""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pools and close handlers that hold connections"""
        with self._lock:
            self._closed = True
        self._background_pool.shutdown(wait=wait)
        self._handler_pool.shutdown(wait=wait)
        with self._lock:
            handlers = list(self._handlers.values())
        for handler in handlers:
            close = getattr(handler, "close", None)
            if callable(close):
                close()

    def _skip(self, action: WorkflowAction, instance: WorkflowInstance, reason: str,
              message: str) -> ActionResult:
        log_action(self.logger, "warning", message, action=action.type,
                   workflow_id=instance.workflow_id, instance_id=instance.id,
                   extra={"action_id": action.id})
        result = ActionResult(action.id, action.type, success=False, skipped=True, error=reason)
        self._publish(WorkflowEvent.ACTION_SKIPPED, instance, result)
        return result

    def _publish(self, event_type: WorkflowEvent, instance: WorkflowInstance,
                 result: ActionResult) -> None:
        if self.event_dispatcher is None:
            return
        data = result.to_dict()
        data["workflow_id"] = instance.workflow_id
        data["state"] = instance.current_state
        self.event_dispatcher.emit(event_type, "workflow_instance", instance.id, data)


def register_default_handlers(dispatcher: ActionDispatcher, storage: StorageInterface,
                              email_sender: Optional[Callable[[Dict[str, Any]], Any]] = None,
                              http_client: Optional[httpx.Client] = None,
                              webhook_timeout: float = 5.0) -> ActionDispatcher:
    """Install the stock email, notification, webhook and task handlers"""
    dispatcher.register(ActionType.EMAIL, EmailActionHandler(email_sender))
    dispatcher.register(ActionType.NOTIFICATION, NotificationActionHandler(storage))
    dispatcher.register(ActionType.WEBHOOK, WebhookActionHandler(http_client, timeout=webhook_timeout))
    dispatcher.register(ActionType.CREATE_TASK, TaskActionHandler(storage))
    return dispatcher
