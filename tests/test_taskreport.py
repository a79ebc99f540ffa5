import json
from datetime import datetime

import pytest

from cronkeeper.executor import ExecuteResult
from cronkeeper.scheduler import TaskInfo
from cronkeeper.taskreport import ReportError, TaskLog, TaskResultReporter

START = datetime(2024, 5, 1, 8, 0, 0)
END = datetime(2024, 5, 1, 8, 0, 5)
TASK = TaskInfo(task_id="t9", project_id=7, name="nightly", command="run.sh", client_ip="10.0.0.2")


def make_reporter(titles, saved):
    return TaskResultReporter(titles.get, saved.append)


def test_successful_report_is_saved():
    saved = []
    reporter = make_reporter({7: "Billing"}, saved)
    result = ExecuteResult("done\n\n", "", START, END)
    entry = reporter.report(TASK, result, "tmp-1")
    assert saved == [entry]
    assert isinstance(entry, TaskLog)
    assert entry.project == "Billing"
    assert entry.with_error == 0
    assert entry.start_time == int(START.timestamp())
    assert entry.end_time == int(END.timestamp())
    assert entry.tmp_id == "tmp-1"
    assert (entry.task_id, entry.project_id, entry.command) == ("t9", 7, "run.sh")
    assert json.loads(entry.result)["result"] == "done\n\n"


def test_failed_run_marks_error():
    saved = []
    reporter = make_reporter({7: "Billing"}, saved)
    entry = reporter.report(TASK, ExecuteResult("", "timeout", START, END), "tmp-2")
    assert entry.with_error == 1
    assert json.loads(entry.result)["system_error"] == "timeout"


def test_empty_result_is_rejected():
    with pytest.raises(ReportError, match="empty result"):
        make_reporter({7: "Billing"}, []).report(TASK, None, "x")


def test_missing_project_is_rejected():
    saved = []
    with pytest.raises(ReportError, match="project not exist"):
        make_reporter({}, saved).report(TASK, ExecuteResult("", "", START, END), "x")
    assert saved == []


def test_lookup_failure_is_wrapped():
    def lookup(project_id):
        raise LookupError("db down")

    reporter = TaskResultReporter(lookup, lambda entry: None)
    with pytest.raises(ReportError, match="db down"):
        reporter.report(TASK, ExecuteResult("", "", START, END), "x")


def test_save_failure_is_wrapped():
    def save(entry):
        raise OSError("disk full")

    reporter = TaskResultReporter({7: "Billing"}.get, save)
    with pytest.raises(ReportError, match="failed to save task result"):
        reporter.report(TASK, ExecuteResult("", "", START, END), "x")