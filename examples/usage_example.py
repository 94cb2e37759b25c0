"""
Approval engine usage example
"""
import asyncio
from pathlib import Path
import logging

from approval_engine import TemplateLoader
from approval_engine.config import EngineSettings
from approval_engine.integrations.event_bus import Topics
from approval_engine.services import build_services
from approval_engine.storage.repository import InMemoryTemplateRepository, InMemoryInstanceRepository


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    services = build_services(
        InMemoryTemplateRepository(),
        InMemoryInstanceRepository(),
        EngineSettings(sweeper_enabled=False)
    )

    async def on_completed(event):
        print(f"Completed: {event.payload['entity_type']}/{event.payload['entity_id']}")

    await services.event_bus.subscribe(Topics.INSTANCE_COMPLETED, on_completed)

    loader = TemplateLoader()
    template = loader.parse(Path(__file__).parent / "contestant_approval.yaml")
    template_id = await loader.install(template, services.template_store)

    result = await services.template_store.validate_template(template_id)
    print(f"Template valid: {result.is_valid}")

    engine = services.engine
    instance = await engine.start_instance(template_id, "CONTESTANT", "contestant-42", "organizer-1")
    print(f"Started instance {instance.id}")

    instance = await engine.advance_instance(
        instance.id, "organizer-1", "ORGANIZER", "APPROVE", comments="Paperwork complete"
    )
    details = await engine.get_instance(instance.id)
    print(f"Now at step: {details.current_step.name}")

    instance = await engine.advance_instance(instance.id, "board-7", "BOARD", "APPROVE")
    print(f"Status: {instance.status.value}")

    for execution in await engine.get_history(instance.id):
        print(f"  #{execution.sequence} {execution.actor_role} {execution.action}")

    metrics = await services.analyzer.get_metrics(template_id)
    print(f"Completion rate: {metrics.completion_rate:.0%}")


if __name__ == "__main__":
    asyncio.run(main())
