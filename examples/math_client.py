"""
Example: Several concurrent calls to the math service.

Usage:
1. Run math_service.py in a separate terminal
2. Then run this script

python math_service.py  # Terminal 1
python math_client.py   # Terminal 2
"""

import asyncio
import json
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from brokerlink import BrokerConfig, Message, RemoteCallError, ServiceBroker


async def call(broker: ServiceBroker, op: str, a, b):
    request = Message(header={"op": op}, payload=json.dumps([a, b]))
    try:
        response = await broker.request("math", request)
        print(f"{op}({a}, {b}) = {json.loads(response.payload)}")
    except RemoteCallError as e:
        print(f"{op}({a}, {b}) failed: {e}")


async def main():
    config = BrokerConfig.from_env(url="ws://localhost:8080")

    async with ServiceBroker.from_config(config) as broker:
        # Requests made before the connection opens are buffered
        await asyncio.gather(
            call(broker, "add", 10, 20),
            call(broker, "multiply", 6, 7),
            call(broker, "divide", 1, 0),
            call(broker, "modulo", 5, 3),
        )

        print("\nMetrics:", json.dumps(broker.metrics.to_dict()["requests"]))


if __name__ == "__main__":
    asyncio.run(main())
