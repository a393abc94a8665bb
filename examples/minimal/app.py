"""Minimal example of swflow integration.

This example demonstrates the basic usage of the WorkflowPlugin with a
small order workflow written in YAML and two Python functions it calls.

Run with:
    cd examples/minimal
    litestar run

Then start an order and pay for it:
    curl -X POST localhost:8000/workflows/instances \
        -H 'content-type: application/json' \
        -d '{"name": "order", "input": {"orderId": "o-1", "items": [{"sku": "A", "price": 12.5}]}}'
    curl -X POST localhost:8000/workflows/events \
        -H 'content-type: application/json' \
        -d '{"type": "payment.received", "data": {"orderId": "o-1"}}'
"""

from __future__ import annotations

from typing import Any

from litestar import Litestar, get

from swflow import (
    ActionRegistry,
    EngineConfig,
    LocalExecutionEngine,
    WorkflowDefinition,
    WorkflowPlugin,
    WorkflowPluginConfig,
    WorkflowRegistry,
)

ORDER_WORKFLOW = """
document:
  dsl: 1.0.0
  namespace: default
  name: order
  version: 1.0.0
  title: Order processing
input:
  schema:
    type: object
    required: [orderId, items]
do:
  - price:
      call: priceOrder
      with:
        items: ${ .items }
      output:
        as: '{total: .}'
      export:
        as: '$context + {total: .total}'
  - awaitPayment:
      listen:
        to:
          one:
            with:
              type: payment.received
            correlate:
              orderId:
                from: .data.orderId
                expect: ${ $workflow.input.orderId }
      timeout:
        after:
          minutes: 30
        then: expire
  - ship:
      call: ship
      with:
        orderId: ${ $workflow.input.orderId }
      then: end
  - expire:
      set:
        orderId: ${ $workflow.input.orderId }
        status: expired
"""

# =============================================================================
# Actions
# =============================================================================

actions = ActionRegistry()


@actions.function("priceOrder")
def price_order(arguments: dict[str, Any]) -> float:
    """Sum the item prices."""
    return sum(item["price"] for item in arguments["items"])


@actions.function("ship")
async def ship(arguments: dict[str, Any]) -> dict[str, Any]:
    """Pretend to hand the order to a carrier."""
    return {"orderId": arguments["orderId"], "status": "shipped", "tracking": f"TRACK-{arguments['orderId']}"}


# =============================================================================
# Application
# =============================================================================

registry = WorkflowRegistry()
engine = LocalExecutionEngine(registry, config=EngineConfig(json_logs=False), actions=actions)

plugin_config = WorkflowPluginConfig(
    engine=engine,
    definitions=[WorkflowDefinition.from_yaml(ORDER_WORKFLOW)],
    configure_logging=True,
)


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


app = Litestar(
    route_handlers=[health_check],
    plugins=[WorkflowPlugin(config=plugin_config)],
    debug=True,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
