from flask import current_app
from leaveratings.tasks import BackgroundTasks

def test_eager_runs_inline_in_order(app):
    seen = []
    with app.app_context():
        tasks = app.extensions["background_tasks"]
        assert tasks.eager is True
        tasks.submit("one", seen.append, 1)
        tasks.submit("two", seen.append, 2)
    assert seen == [1, 2]

def test_failure_is_logged_and_isolated(app, caplog):
    seen = []

    def _boom():
        raise ValueError("nope")

    with app.app_context():
        tasks = app.extensions["background_tasks"]
        tasks.submit("boom", _boom)
        tasks.submit("after", seen.append, "ran")
    assert seen == ["ran"]
    assert "background_task_failed" in caplog.text

def test_threaded_job_gets_app_context(app):
    app.config["BACKGROUND_TASKS_EAGER"] = False
    try:
        pool = BackgroundTasks()
        pool.init_app(app)
        with app.app_context():
            future = pool.submit("ctx", lambda: current_app.config.setdefault("_TASK_PROBE", "seen"))
        future.result(timeout=5)
        pool.shutdown()
        assert app.config.pop("_TASK_PROBE") == "seen"
    finally:
        app.config["BACKGROUND_TASKS_EAGER"] = True
        # restore the eager instance the rest of the suite uses
        from leaveratings.extensions import tasks
        app.extensions["background_tasks"] = tasks
