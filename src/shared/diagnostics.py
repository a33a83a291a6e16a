"""
Diagnostic utilities.

Process memory and thread reporting used after cache reconciliation and
around long-running operations.
"""

import logging
import threading
import time
import types
from typing import Any

import psutil

logger = logging.getLogger(__name__)


def get_memory_info() -> dict[str, Any]:
    """Get process and system memory usage."""
    try:
        process = psutil.Process()
        memory_info = process.memory_info()
        system_memory = psutil.virtual_memory()

        return {
            'process_rss_mb': round(memory_info.rss / 1024 / 1024, 2),
            'process_vms_mb': round(memory_info.vms / 1024 / 1024, 2),
            'system_total_mb': round(system_memory.total / 1024 / 1024, 2),
            'system_available_mb': round(system_memory.available / 1024 / 1024, 2),
            'system_used_percent': system_memory.percent,
            'process_memory_percent': round(process.memory_percent(), 2),
        }
    except psutil.Error as e:
        return {'error': f'Failed to get memory info: {e}'}


def get_thread_info() -> dict[str, Any]:
    """Get information about active threads."""
    info: dict[str, Any] = {
        'active_count': threading.active_count(),
        'thread_names': [t.name for t in threading.enumerate()],
        'main_thread_alive': threading.main_thread().is_alive(),
    }
    try:
        info['system_threads'] = psutil.Process().num_threads()
    except psutil.Error as e:
        logger.debug('Failed to get system thread count: %s', e)
    return info


def log_memory_usage(context: str = '', level: int = logging.INFO) -> None:
    """Quick memory usage logging."""
    if not logger.isEnabledFor(level):
        return
    memory_info = get_memory_info()
    context_label = f' ({context})' if context else ''
    logger.log(
        level,
        'Memory usage%s: RSS=%sMB, Available=%sMB',
        context_label,
        memory_info.get('process_rss_mb', 'N/A'),
        memory_info.get('system_available_mb', 'N/A'),
    )


def log_thread_status(context: str = '', level: int = logging.INFO) -> None:
    """Quick thread status logging."""
    thread_info = get_thread_info()
    context_label = f' ({context})' if context else ''
    logger.log(
        level,
        'Thread status%s: Active=%s, System=%s',
        context_label,
        thread_info.get('active_count', 'N/A'),
        thread_info.get('system_threads', 'N/A'),
    )


def log_comprehensive_diagnostics(
    operation: str = 'general',
    level: int = logging.INFO,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log memory, thread and caller-supplied statistics."""
    logger.log(level, '=== DIAGNOSTIC INFO: %s ===', operation.upper())

    memory_info = get_memory_info()
    logger.log(
        level,
        'Memory - RSS: %sMB, VMS: %sMB, System Available: %sMB (%s%% used)',
        memory_info.get('process_rss_mb', 'N/A'),
        memory_info.get('process_vms_mb', 'N/A'),
        memory_info.get('system_available_mb', 'N/A'),
        memory_info.get('system_used_percent', 'N/A'),
    )

    thread_info = get_thread_info()
    logger.log(
        level,
        'Threads - Active: %s, System: %s, Main alive: %s',
        thread_info.get('active_count', 'N/A'),
        thread_info.get('system_threads', 'N/A'),
        thread_info.get('main_thread_alive', 'N/A'),
    )
    thread_names = thread_info.get('thread_names')
    if thread_names:
        logger.log(level, 'Active threads: %s', ', '.join(thread_names))

    for name, value in (extra or {}).items():
        logger.log(level, '%s: %s', name, value)

    logger.log(level, '=== END DIAGNOSTIC INFO: %s ===', operation.upper())


class ResourceMonitor:
    """Context manager logging duration and memory around an operation."""

    def __init__(self, operation_name: str, level: int = logging.INFO) -> None:
        self.operation_name = operation_name
        self.level = level
        self.start_time: float | None = None
        self.start_rss_mb: float | None = None

    def __enter__(self) -> 'ResourceMonitor':
        self.start_time = time.time()
        self.start_rss_mb = get_memory_info().get('process_rss_mb')
        log_memory_usage(f'{self.operation_name} - START', self.level)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        if self.start_time is None:
            msg = 'Unexpected missing start_time in ResourceMonitor'
            raise RuntimeError(msg)
        duration = time.time() - self.start_time
        logger.log(
            self.level,
            "Operation '%s' completed in %.2f seconds",
            self.operation_name,
            duration,
        )
        end_rss_mb = get_memory_info().get('process_rss_mb')
        if isinstance(self.start_rss_mb, float) and isinstance(end_rss_mb, float):
            logger.log(
                self.level,
                'RSS change: %.2f MB -> %.2f MB (%+.2f)',
                self.start_rss_mb,
                end_rss_mb,
                end_rss_mb - self.start_rss_mb,
            )

        if exc_type:
            logger.error(
                "Operation '%s' failed with %s: %s",
                self.operation_name,
                exc_type.__name__,
                exc_val,
            )
