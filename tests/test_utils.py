"""Tests for result persistence and performance reporting."""

import json

import pytest

from utils import PerformanceMonitor, create_performance_report, create_results_summary, format_duration, save_results


def test_save_results_writes_field_elements_as_strings(tmp_path):
    results = {
        'election': {'state_root': 2 ** 250},
        'batch_outcomes': [[{'status': 'applied'}, {'status': 'skipped: padding'}]],
        'tally': [3, 1, 0],
        'integrity_checks': {'all_checks_passed': True},
    }
    path = tmp_path / "out" / "report.json"
    save_results(results, path)

    data = json.loads(path.read_text())['data']
    assert data['election']['state_root'] == str(2 ** 250)
    assert data['integrity_checks']['all_checks_passed'] is True

    summary = (tmp_path / "out" / "report_summary.txt").read_text()
    assert "Batch 0: 1/2 applied" in summary
    assert "Option 0: 3 (75.0%)" in summary
    assert "all_checks_passed: PASSED" in summary


def test_results_summary_without_votes():
    summary = create_results_summary({'tally': [0, 0]})
    assert "Total weight: 0" in summary


def test_performance_monitor_summary(tmp_path):
    monitor = PerformanceMonitor()
    assert "No performance data available." in create_performance_report(monitor)

    for _ in range(3):
        with monitor.start_operation("process_batch"):
            sum(range(1000))
    with pytest.raises(RuntimeError):
        with monitor.start_operation("tally_batch"):
            raise RuntimeError("prover crashed")

    summary = monitor.get_summary()
    assert summary['total_operations'] == 4
    assert summary['operations']['process_batch']['count'] == 3
    assert summary['operations']['tally_batch']['failures'] == 1
    assert "PROCESS_BATCH:" in create_performance_report(monitor)

    path = tmp_path / "metrics" / "performance_metrics.json"
    monitor.save_metrics(path)
    saved = json.loads(path.read_text())
    assert len(saved['samples']) == 4
    assert saved['summary']['operations']['process_batch']['count'] == 3
    assert "platform" in saved['system_info']


def test_disabled_monitor_records_nothing():
    monitor = PerformanceMonitor(enabled=False)
    with monitor.start_operation("process_batch"):
        sum(range(1000))

    assert monitor.samples == []
    assert monitor.get_summary()['total_operations'] == 0
    assert "Benchmarking disabled." in create_performance_report(monitor)


def test_format_duration():
    assert format_duration(0.25) == "250.0ms"
    assert format_duration(12.5) == "12.50s"
    assert format_duration(125) == "2m 5.0s"
    assert format_duration(3725) == "1h 2m 5.0s"
