#!/usr/bin/env python3
"""
Gateway connectivity check.

Sends a one-word chat request using PLATO_BASE_URL / PLATO_API_KEY from the
environment and prints the reply. Optionally generates a test image.

Usage:
    python scripts/ping_gateway.py
    python scripts/ping_gateway.py --image "a lighthouse at dawn"
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from llm_gateway import GatewayError, GatewaySettings, GatewayClient


async def main(image_prompt: str = "") -> int:
    settings = GatewaySettings.from_env()

    print("=" * 60)
    print("GATEWAY PING")
    print("=" * 60)
    print(f"Base URL:      {settings.base_url or '(missing)'}")
    print(f"API key:       {'set' if settings.api_key else '(missing)'}")
    print(f"Default model: {settings.default_model}")
    print()

    if not settings.is_configured:
        print("✗ Set PLATO_BASE_URL and PLATO_API_KEY in the environment")
        return 1

    async with GatewayClient(settings) as client:
        try:
            reply = await client.ping()
            print(f"✓ Chat reply: {reply}")

            if image_prompt:
                url = await client.generate_image(image_prompt)
                if url:
                    print(f"✓ Image URL: {url}")
                else:
                    print("✗ Image endpoint returned no URL")
                    return 1
        except GatewayError as e:
            print(f"✗ {type(e).__name__}: {e}")
            return 1

    print("=" * 60)
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Check gateway connectivity")
    parser.add_argument("--image", default="", help="Also generate an image for this prompt")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.image)))
