"""
Run-time support for an election: logging setup, per-operation timing of the
engine phases and the report files written after a run.
"""

import json
import logging
import platform
import time
from contextlib import nullcontext
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import psutil

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
RULE = "=" * 80


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """Route all records to a log file and stderr, replacing earlier handlers"""
    if log_file is None:
        log_file = Path("logs") / f"maci_{datetime.now():%Y%m%d_%H%M%S}.log"
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.info(f"Logging to {log_file}")
    return logger


# ============================================================================
# OPERATION TIMING
# ============================================================================


@dataclass
class OperationSample:
    name: str
    started_at: float
    elapsed: float
    cpu_percent: float
    rss_mb: float
    failed: bool = False


class PerformanceMonitor:
    """Times named engine operations; a disabled monitor records nothing"""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.samples: List[OperationSample] = []
        self.process = psutil.Process() if enabled else None

    def start_operation(self, name: str):
        if not self.enabled:
            return nullcontext()
        return TimedOperation(self, name)

    def samples_for(self, name: str) -> List[OperationSample]:
        return [s for s in self.samples if s.name == name]

    def get_summary(self) -> Dict[str, Any]:
        by_name: Dict[str, List[OperationSample]] = {}
        for sample in self.samples:
            by_name.setdefault(sample.name, []).append(sample)

        operations = {name: _operation_stats(samples) for name, samples in by_name.items()}
        return {
            'enabled': self.enabled,
            'total_operations': len(self.samples),
            'total_duration': sum(stats['total_duration'] for stats in operations.values()),
            'operations': operations,
        }

    def save_metrics(self, filepath: Path):
        """Raw samples, their summary and the host description as JSON"""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            'samples': [asdict(s) for s in self.samples],
            'summary': self.get_summary(),
            'system_info': get_system_info(),
        }
        with open(filepath, 'w') as f:
            json.dump(payload, f, indent=2)

        logger.info(f"Saved {len(self.samples)} timing samples to {filepath}")


def _operation_stats(samples: List[OperationSample]) -> Dict[str, Any]:
    elapsed = np.array([s.elapsed for s in samples])
    total = float(elapsed.sum())
    return {
        'count': len(samples),
        'failures': sum(1 for s in samples if s.failed),
        'total_duration': total,
        'avg_duration': float(elapsed.mean()),
        'min_duration': float(elapsed.min()),
        'max_duration': float(elapsed.max()),
        'std_duration': float(elapsed.std()),
        'avg_cpu_percent': float(np.mean([s.cpu_percent for s in samples])),
        'peak_memory_mb': max(s.rss_mb for s in samples),
        'throughput_ops_per_sec': len(samples) / total if total > 0 else 0.0,
    }


class TimedOperation:
    """Context manager recording one sample on exit, failed or not"""

    def __init__(self, monitor: PerformanceMonitor, name: str):
        self.monitor = monitor
        self.name = name
        self._started_at = 0.0
        self._start = 0.0

    def _rss_mb(self) -> float:
        return self.monitor.process.memory_info().rss / 2 ** 20

    def __enter__(self):
        # cpu_percent() measures from its previous call
        self.monitor.process.cpu_percent()
        self._started_at = time.time()
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.monitor.samples.append(OperationSample(
            name=self.name,
            started_at=self._started_at,
            elapsed=time.perf_counter() - self._start,
            cpu_percent=self.monitor.process.cpu_percent(),
            rss_mb=self._rss_mb(),
            failed=exc_type is not None,
        ))
        return False


def get_system_info() -> Dict[str, Any]:
    memory = psutil.virtual_memory()
    return {
        'platform': platform.platform(),
        'python_version': platform.python_version(),
        'cpu_count_logical': psutil.cpu_count(logical=True),
        'total_memory_gb': round(memory.total / 2 ** 30, 2),
        'timestamp': datetime.now().isoformat(),
    }


# ============================================================================
# REPORTS
# ============================================================================


def _to_serializable(obj: Any) -> Any:
    """Field elements are written as decimal strings"""
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, int):
        return str(obj)
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    if hasattr(obj, '__dataclass_fields__'):
        return _to_serializable(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): _to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_serializable(item) for item in obj]
    if isinstance(obj, np.generic):
        return _to_serializable(obj.item())
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, Path):
        return str(obj)
    return obj


def save_results(results: Dict[str, Any], filepath: Path):
    """Write the election results as JSON plus `<stem>_summary.txt` beside it"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    document = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'system_info': get_system_info(),
        },
        'data': _to_serializable(results),
    }
    with open(filepath, 'w') as f:
        json.dump(document, f, indent=2)

    summary_path = filepath.with_name(f"{filepath.stem}_summary.txt")
    summary_path.write_text(create_results_summary(results))

    logger.info(f"Results saved to {filepath} and {summary_path}")


def _header(title: str) -> List[str]:
    return [RULE, title, RULE, f"Generated: {datetime.now():%Y-%m-%d %H:%M:%S}"]


def create_results_summary(results: Dict[str, Any]) -> str:
    lines = _header("QUADRATIC VOTING ELECTION - RESULTS SUMMARY")

    for key, value in results.get('election', {}).items():
        lines.append(f"  {key}: {value}")

    batches = results.get('batch_outcomes', [])
    if batches:
        lines += ["", "MESSAGE PROCESSING:"]
    for number, outcomes in enumerate(batches):
        applied = [o for o in outcomes if o.get('status') == 'applied']
        lines.append(f"  Batch {number}: {len(applied)}/{len(outcomes)} applied")

    if 'tally' in results:
        tally = results['tally']
        total = sum(tally)
        lines += ["", "TALLY (quadratic weight per option):"]
        lines += [
            f"  Option {option}: {weight} ({weight / total:.1%})"
            for option, weight in enumerate(tally) if weight
        ]
        lines.append(f"  Total weight: {total}")

    checks = results.get('integrity_checks', {})
    if checks:
        lines += ["", "INTEGRITY CHECKS:"]
    for check, passed in checks.items():
        lines.append(f"  {check}: {'PASSED' if passed else 'FAILED'}")

    lines += ["", RULE]
    return "\n".join(lines)


def create_performance_report(monitor: PerformanceMonitor) -> str:
    summary = monitor.get_summary()
    lines = _header("QUADRATIC VOTING ELECTION - PERFORMANCE REPORT")

    if not monitor.enabled:
        lines += ["Benchmarking disabled.", RULE]
        return "\n".join(lines)

    lines.append(f"Operations: {summary['total_operations']} "
                 f"in {format_duration(summary['total_duration'])}")
    if not summary['operations']:
        lines.append("No performance data available.")

    for name, stats in summary['operations'].items():
        lines += [
            "",
            f"{name.upper()}:",
            f"  Runs: {stats['count']} ({stats['failures']} failed)",
            f"  Time: {format_duration(stats['total_duration'])} total, "
            f"{stats['avg_duration']:.4f}s mean, {stats['std_duration']:.4f}s std",
            f"  Range: {stats['min_duration']:.4f}s to {stats['max_duration']:.4f}s",
            f"  Throughput: {stats['throughput_ops_per_sec']:.2f} ops/sec",
            f"  Peak RSS: {stats['peak_memory_mb']:.1f} MB",
        ]

    lines += ["", RULE]
    return "\n".join(lines)


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    if hours:
        return f"{hours}h {minutes}m {secs:.1f}s"
    return f"{minutes}m {secs:.1f}s"
