from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional
from flask import Flask, current_app


class BackgroundTasks:
    """
    Fire-and-forget work that must not hold up the response (usage recording,
    review cleanup, entitlement write-back).

    Every job runs inside its own app context, so it gets its own DB session
    and can use current_app. Failures never propagate to the submitter: they
    are logged under the job name, which is the only error channel.
    With BACKGROUND_TASKS_EAGER the job runs inline, in submission order.
    """

    def __init__(self, app: Optional[Flask] = None):
        self._executor: Optional[ThreadPoolExecutor] = None
        self.eager = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.eager = bool(app.config.get("BACKGROUND_TASKS_EAGER", False))
        if not self.eager:
            self._executor = ThreadPoolExecutor(
                max_workers=int(app.config.get("BACKGROUND_TASKS_MAX_WORKERS", 4)),
                thread_name_prefix="bg-task",
            )
        app.extensions["background_tasks"] = self

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Future]:
        app = current_app._get_current_object()
        if self.eager or self._executor is None:
            _run(app, name, fn, args, kwargs)
            return None
        return self._executor.submit(_run, app, name, fn, args, kwargs)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def _run(app: Flask, name: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
    from leaveratings.extensions import db

    with app.app_context():
        try:
            fn(*args, **kwargs)
        except Exception:
            db.session.rollback()
            app.logger.exception("background_task_failed", extra={"task": name})
