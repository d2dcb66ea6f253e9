"""
Health checks and monitoring utilities.
"""

import os
import sys
import logging
from typing import Dict, Any, Optional
from datetime import datetime

from customer_ingest.ingestion.batch_sink import BatchSink
from customer_ingest.ingestion.pipeline import IngestionSummary
from customer_ingest.monitoring.logger_config import IngestionLogger

logger = logging.getLogger(__name__)

PROCESS_STARTED_AT = datetime.now()


class HealthChecker:
    """Provides health checks for an opened batch sink."""

    def __init__(self, sink: BatchSink):
        self.sink = sink

    def check_sink_health(self) -> Dict[str, Any]:
        """Check that the sink is reachable and answers a trivial query."""
        start_time = datetime.now()

        try:
            is_healthy = self.sink.health_check()
        except Exception as e:
            logger.error(f"Sink health check failed: {e}")
            return {
                'status': 'unhealthy',
                'sink': self.sink.name,
                'error': str(e),
                'response_time_ms': self._elapsed_ms(start_time),
                'timestamp': datetime.now().isoformat()
            }

        result = {
            'status': 'healthy' if is_healthy else 'unhealthy',
            'sink': self.sink.name,
            'response_time_ms': self._elapsed_ms(start_time),
            'timestamp': datetime.now().isoformat()
        }
        if not is_healthy:
            result['error'] = f'{self.sink.name} did not answer the health query'
        return result

    def get_process_metrics(self) -> Dict[str, Any]:
        return {
            'pid': os.getpid(),
            'started_at': PROCESS_STARTED_AT.isoformat(),
            'uptime_seconds': int((datetime.now() - PROCESS_STARTED_AT).total_seconds())
        }

    def comprehensive_health_check(self, last_summary: Optional[IngestionSummary] = None) -> Dict[str, Any]:
        """Perform health check of the sink and attach process and run information."""
        start_time = datetime.now()

        sink_health = self.check_sink_health()

        report = {
            'overall_status': sink_health['status'],
            'response_time_ms': self._elapsed_ms(start_time),
            'timestamp': datetime.now().isoformat(),
            'components': {
                'sink': sink_health
            },
            'process': self.get_process_metrics()
        }
        if last_summary is not None:
            report['last_run'] = last_summary.as_dict()

        return report

    @staticmethod
    def _elapsed_ms(start_time: datetime) -> int:
        return int((datetime.now() - start_time).total_seconds() * 1000)


def format_text_report(result: Dict[str, Any]) -> str:
    lines = [
        f"Health Status: {result.get('overall_status', result.get('status', 'unknown'))}",
        f"Timestamp: {result.get('timestamp', 'unknown')}"
    ]

    if 'response_time_ms' in result:
        lines.append(f"Response Time: {result['response_time_ms']}ms")

    if 'error' in result:
        lines.append(f"Error: {result['error']}")

    for component, health in result.get('components', {}).items():
        lines.append(f"\n{component.title()}:")
        lines.append(f"  Status: {health.get('status', 'unknown')}")
        if 'error' in health:
            lines.append(f"  Error: {health['error']}")

    return "\n".join(lines)


def main(argv=None) -> int:
    """CLI for health checks."""
    import argparse
    import json

    from dotenv import load_dotenv

    from customer_ingest.ingestion.runner import SINK_BACKENDS, build_sink

    load_dotenv()

    parser = argparse.ArgumentParser(description='Health check utility')
    parser.add_argument('--backend', choices=SINK_BACKENDS, default=os.getenv('SINK_BACKEND', 'postgres'),
                        help='Sink backend to check')
    parser.add_argument('--format', choices=['json', 'text'], default='text',
                        help='Output format')

    args = parser.parse_args(argv)

    IngestionLogger.setup_logging()

    try:
        sink = build_sink(args.backend)
        sink.open()
    except Exception as e:
        logger.error(f"Could not open {args.backend} sink: {e}")
        result = {
            'overall_status': 'unhealthy',
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }
    else:
        try:
            result = HealthChecker(sink).comprehensive_health_check()
        finally:
            sink.close()

    if args.format == 'json':
        print(json.dumps(result, indent=2, default=str))
    else:
        print(format_text_report(result))

    return 0 if result.get('overall_status') == 'healthy' else 1


if __name__ == "__main__":
    sys.exit(main())
