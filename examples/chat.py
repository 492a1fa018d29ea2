"""
Example: Topic chat over the broker, using the blocking API.

Every instance subscribes to the "chat" topic and publishes each line
typed on stdin. Subscribers only see messages published after they
joined.

python chat.py alice  # Terminal 1
python chat.py bob    # Terminal 2
"""

import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from brokerlink import BrokerConfig, ServiceBroker, SyncBroker


def main():
    name = sys.argv[1] if len(sys.argv) > 1 else f"user-{os.getpid()}"
    config = BrokerConfig.from_env(url="ws://localhost:8080")

    with SyncBroker(ServiceBroker.from_config(config)) as broker:
        broker.subscribe("chat", lambda text: print(f"\r{text}\n> ", end=""))
        broker.add_connect_listener(lambda: print(f"[connected to {config.url}]"))

        print("Type messages, Ctrl+D to quit")
        for line in sys.stdin:
            line = line.strip()
            if line:
                broker.publish("chat", f"{name}: {line}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
