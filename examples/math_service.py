"""
Example: Providing a service through the broker.

Advertises a "math" service whose requests carry the operation in the
header and the operands as a JSON array in the payload.

Usage:
1. Start a service broker (BROKERLINK_URL, default ws://localhost:8080)
2. Run this script, then math_client.py in another terminal

python math_service.py  # Terminal 1
python math_client.py   # Terminal 2
"""

import asyncio
import json
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from brokerlink import (
    BrokerConfig,
    Message,
    ServiceBroker,
    ServiceSelector,
    default_pretty_handler,
)

OPERATIONS = {
    "add": lambda a, b: a + b,
    "multiply": lambda a, b: a * b,
    "divide": lambda a, b: a / b,
}


async def math(request: Message) -> Message:
    op = request.header.get("op")
    if op not in OPERATIONS:
        raise ValueError(f"Unknown operation: {op}")

    a, b = json.loads(request.payload)
    if op == "divide" and b == 0:
        raise ZeroDivisionError("Cannot divide by zero")

    return Message(header={"op": op}, payload=json.dumps(OPERATIONS[op](a, b)))


async def main():
    config = BrokerConfig.from_env(url="ws://localhost:8080")
    broker = ServiceBroker.from_config(config, log_handler=default_pretty_handler)

    broker.advertise(ServiceSelector("math", capabilities=sorted(OPERATIONS)), math)
    await broker.start()

    print(f"Math service provided via {config.url}, Ctrl+C to stop")
    try:
        await asyncio.Event().wait()
    finally:
        await broker.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
