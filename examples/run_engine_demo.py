"""
Demo script for the behavior DeliveryEngine.

Submits a small choreography of outputs with a dependency chain and a
coordination group, prints lifecycle events and waits for the group.
"""

import asyncio

from loguru import logger

from behavior_delivery import DeliveryEngine, EngineSettings
from behavior_delivery.coordinator import DeliveryEvent


async def on_event(evt: DeliveryEvent):
    logger.info(
        f"event={evt.kind.value} output={evt.output_id} group={evt.group_id} "
        f"retries={evt.retry_count} queue={evt.queue_size}"
    )


def request(output_type, target_type, identifier, data, **coordination):
    return {
        "behavior_data": data,
        "output_type": output_type,
        "delivery_method": "queued",
        "target": {"type": target_type, "identifier": identifier, "protocol": "sim"},
        "format": {"type": "command", "encoding": "json"},
        "coordination": coordination,
    }


async def main():
    settings = EngineSettings(engine_id="demo", scheduler_interval=0.05, coordination_interval=0.1)
    async with DeliveryEngine(settings=settings) as engine:
        engine.bus.subscribe(on_event)
        logger.info("🚀 Starting delivery engine demo")

        reach = await engine.submit(request("action", "actuator", "arm-1", {"command": "reach"}))
        grip = await engine.submit(
            request("action", "actuator", "arm-1", {"command": "grip"}, dependencies=[reach.output_id])
        )
        say = await engine.submit(
            request("response", "interface", "speaker", {"status": "ok", "data": "Got it"})
        )

        await engine.coordinate("pick-up", [reach.output_id, grip.output_id, say.output_id])
        group = await engine.wait_for_group("pick-up", timeout=5.0)
        logger.info(f"Group {group.id} complete at {group.completed_at.isoformat()}")

        report = await engine.status([reach.output_id, grip.output_id, say.output_id])
        for out in report.outputs:
            logger.info(
                f"{out.id}: {out.status.value} after {out.delivery_info.retry_count} retr(ies)"
            )
        h = engine.health()
        logger.info(f"Final health: queue={h.queue_size} history={h.history_size}")

    logger.info("✅ Delivery engine demo complete")


if __name__ == "__main__":
    asyncio.run(main())
