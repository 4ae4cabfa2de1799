"""Execution worker entry point.

    python -m execution_queue.main worker --workflows-dir ./workflows
    python -m execution_queue.main run --workflow-file flow.json --input '{"x": 1}'
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from agent.llm import ChatModelLLM, get_chat_model
from common.actions.http_provider import HttpActionProvider
from common.config.settings import RuntimeSettings
from common.stores.in_memory import InMemoryRecordStore
from execution_queue.agents import ReactAgentRunner
from execution_queue.controller import ExecutionController
from execution_queue.queue import JobQueue
from execution_queue.worker import WorkerPool
from workflow.definitions import save_workflow
from workflow.executor import WorkflowExecutor
from workflow.executors import build_default_registry
from workflow.models import WorkflowDefinition

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Services:
    """Process-wide collaborators, built once and passed to the engines."""

    def __init__(self, settings: RuntimeSettings):
        self.settings = settings
        self.store = InMemoryRecordStore()
        llm = ChatModelLLM(get_chat_model())
        action_provider = HttpActionProvider()
        self.executor = WorkflowExecutor(
            build_default_registry(llm, action_provider), self.store, settings=settings
        )
        self.queue = JobQueue(
            remove_on_complete=settings.QUEUE_REMOVE_ON_COMPLETE,
            remove_on_fail=settings.QUEUE_REMOVE_ON_FAIL,
            lease_seconds=settings.QUEUE_LEASE_SECONDS,
            max_stalled_count=settings.QUEUE_MAX_STALLED_COUNT,
        )
        self.controller = ExecutionController(
            self.executor,
            self.queue,
            self.store,
            agent_runner=ReactAgentRunner(llm, action_provider, self.store, settings),
            settings=settings,
        )

    def worker_pool(self, concurrency: Optional[int] = None) -> WorkerPool:
        return WorkerPool(
            self.queue,
            self.controller.process_job,
            concurrency=concurrency or self.settings.QUEUE_CONCURRENCY,
            grace_period=self.settings.SHUTDOWN_GRACE_PERIOD_SECONDS,
            poll_interval=self.settings.QUEUE_POLL_INTERVAL_SECONDS,
            stall_check_interval=self.settings.QUEUE_LEASE_SECONDS / 2,
        )


async def load_workflows(services: Services, directory: Path) -> int:
    count = 0
    for path in sorted(directory.glob("*.json")):
        definition = WorkflowDefinition.model_validate_json(path.read_text())
        await save_workflow(services.store, definition)
        count += 1
    logger.info(f"Loaded {count} workflow definitions from {directory}")
    return count


async def run_worker(args: argparse.Namespace) -> None:
    services = Services(RuntimeSettings())
    if args.workflows_dir:
        await load_workflows(services, Path(args.workflows_dir))
    pool = services.worker_pool(args.concurrency)
    await pool.start()
    pool.install_signal_handlers()
    await pool.wait_stopped()


async def run_once(args: argparse.Namespace) -> Dict[str, Any]:
    services = Services(RuntimeSettings())
    definition = WorkflowDefinition.model_validate_json(Path(args.workflow_file).read_text())
    await save_workflow(services.store, definition)
    initial_data = json.loads(args.input) if args.input else {}

    if args.sync:
        result = await services.controller.execute_workflow_sync(
            definition.id, initial_data, user_id=args.user_id
        )
        return result.model_dump(mode="json")

    job_id = await services.controller.enqueue_workflow_execution(
        definition.id, args.user_id, initial_data
    )
    pool = services.worker_pool(1)
    await pool.start()
    try:
        job = await services.queue.wait_until_finished(job_id)
    finally:
        await pool.stop()
    return job.model_dump(mode="json") if job else {"id": job_id, "status": "unknown"}


def main():
    """Run the execution worker CLI."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Workflow and agent execution worker")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    worker_parser = subparsers.add_parser("worker", help="Process queued executions")
    worker_parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of concurrent jobs (default: QUEUE_CONCURRENCY)",
    )
    worker_parser.add_argument(
        "--workflows-dir",
        default=None,
        help="Directory of workflow definition JSON files to load at startup",
    )

    run_parser = subparsers.add_parser("run", help="Execute one workflow definition file")
    run_parser.add_argument("--workflow-file", required=True, help="Workflow definition JSON")
    run_parser.add_argument("--input", default=None, help="Initial context as a JSON object")
    run_parser.add_argument("--user-id", default=None, help="Acting user id")
    run_parser.add_argument(
        "--sync", action="store_true", help="Run inline with the sync timeout instead of queueing"
    )

    args = parser.parse_args()

    if args.command == "worker":
        try:
            asyncio.run(run_worker(args))
        except Exception as e:
            logger.error(f"Worker failed: {e}", exc_info=True)
            sys.exit(1)
    elif args.command == "run":
        try:
            outcome = asyncio.run(run_once(args))
        except Exception as e:
            logger.error(f"Run failed: {e}", exc_info=True)
            sys.exit(1)
        print(json.dumps(outcome, indent=2, default=str))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
