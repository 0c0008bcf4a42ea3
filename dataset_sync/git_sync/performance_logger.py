"""Timing of network operations (connect, fetch, push)."""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional, Any, Generator, List


@dataclass
class PerformanceMetrics:
    """Performance metrics for one remote operation."""
    operation: str
    duration: float
    start_time: float
    end_time: float
    context: Optional[Dict[str, Any]] = None
    success: bool = True


class PerformanceLogger:
    """
    Performance logger for remote operations.

    Only the network legs of pull/resolve/sync suspend for any real time, so
    those are the ones timed here. Slow operations are reported as warnings.
    """

    SLOW_OPERATION_SECONDS = 15.0

    def __init__(self, logger_name: str = 'dataset_sync.git_sync.performance', max_metrics: int = 100):
        """
        Initialize performance logger.

        Args:
            logger_name: Name for the logger instance
            max_metrics: Number of most recent measurements kept for summaries
        """
        self.logger = logging.getLogger(logger_name)
        self.max_metrics = max_metrics
        self._metrics: List[PerformanceMetrics] = []
        self._lock = threading.Lock()

    @contextmanager
    def time_operation(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        log_level: int = logging.DEBUG
    ) -> Generator[None, None, None]:
        """
        Context manager for timing operations.

        Args:
            operation: Name of the operation being timed
            context: Additional context information (remote name, url)
            log_level: Logging level for completion messages
        """
        start_time = time.time()
        self.logger.log(log_level, f"Starting {operation}")

        success = True
        try:
            yield
        except Exception as e:
            success = False
            self.logger.info(f"{operation} failed after {time.time() - start_time:.3f}s: {e}")
            raise
        finally:
            end_time = time.time()
            duration = end_time - start_time

            with self._lock:
                self._metrics.append(PerformanceMetrics(
                    operation=operation,
                    duration=duration,
                    start_time=start_time,
                    end_time=end_time,
                    context=context,
                    success=success
                ))
                del self._metrics[:-self.max_metrics]

            if success:
                self.logger.log(log_level, f"{operation} completed in {duration:.3f}s")
                if context:
                    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
                    self.logger.debug(f"{operation} context: {context_str}")

            if duration > self.SLOW_OPERATION_SECONDS:
                self.logger.warning(f"Slow remote operation: '{operation}' took {duration:.3f}s")

    def get_performance_summary(self) -> Dict[str, Any]:
        """
        Get a summary of recorded metrics.

        Returns:
            Dictionary containing performance summary
        """
        with self._lock:
            metrics = list(self._metrics)

        if not metrics:
            return {"total_operations": 0, "average_duration": 0.0}

        total_operations = len(metrics)
        total_duration = sum(m.duration for m in metrics)
        successful_ops = sum(1 for m in metrics if m.success)
        slowest_op = max(metrics, key=lambda m: m.duration)

        return {
            "total_operations": total_operations,
            "total_duration": total_duration,
            "average_duration": total_duration / total_operations,
            "success_rate": successful_ops / total_operations,
            "slowest_operation": {
                "name": slowest_op.operation,
                "duration": slowest_op.duration
            }
        }

    def log_performance_summary(self) -> None:
        """Log a summary of all performance metrics."""
        summary = self.get_performance_summary()

        if summary["total_operations"] == 0:
            self.logger.info("No performance metrics available")
            return

        self.logger.info(
            f"Performance Summary: {summary['total_operations']} operations, "
            f"avg {summary['average_duration']:.3f}s, "
            f"{summary['success_rate']:.1%} success rate"
        )


# Global performance logger instance
_performance_logger: Optional[PerformanceLogger] = None


def get_performance_logger() -> PerformanceLogger:
    """Get or create the global performance logger instance."""
    global _performance_logger
    if _performance_logger is None:
        _performance_logger = PerformanceLogger()
    return _performance_logger
