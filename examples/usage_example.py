"""
Workflow engine usage example: run the lead nurture workflow in memory
"""
import asyncio
from datetime import timedelta
from pathlib import Path
import logging

from crm_workflows.core.parser import WorkflowParser
from crm_workflows.models.execution import utcnow
from crm_workflows.runtime import build_in_memory_runtime


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    runtime = build_in_memory_runtime()
    workflow = WorkflowParser().parse_file(Path(__file__).parent / "lead_nurture.yaml")
    await runtime.workflow_store.save(workflow)

    lead = {"id": "lead-1", "name": "Sanne", "email": "sanne@example.nl", "phone": "+31612345678",
            "company": "Bakkerij de Vries", "score": 72}
    execution = await runtime.coordinator.start(workflow.id, {"lead": lead})
    print(f"Execution {execution.id}: {execution.status.value} at {execution.current_node_id}")

    # Pretend two days have passed
    await runtime.scheduler.tick(now=utcnow() + timedelta(days=2, minutes=1))
    execution = await runtime.execution_store.get(execution.id)
    print(f"Execution {execution.id}: {execution.status.value}")
    print(f"Emails: {len(runtime.email_sender.sent)}, tasks: {len(runtime.task_store.tasks)}, "
          f"SMS: {len(runtime.sms_sender.sent)}")
    print(f"Lead record: {runtime.record_store.records['lead-1']}")

    await runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
