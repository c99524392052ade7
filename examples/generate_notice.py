#!/usr/bin/env python
"""
Example script for calling the ProductGuard Takedown API.

This script sends one detected infringement to the notice generator and
prints the chosen enforcement target, the quality check and the notice.
"""

import json
import sys
import httpx
import asyncio
from typing import Dict, Any

API_URL = "http://localhost:8000/notices/generate"

# Sample infringement of a trading course re-uploaded to Telegram
SAMPLE_REQUEST = {
    "infringement": {
        "id": "3f1c2a9e-1111-4c2b-9d7e-000000000001",
        "source_url": "https://t.me/s/freecourseshub/4512",
        "platform": "telegram",
        "severity_score": 82,
        "status": "active",
        "evidence": {
            "matched_excerpts": [
                "The Liquidity Sweep Blueprint teaches the exact order-block entries we use live",
            ],
            "page_title": "FREE Liquidity Sweep Blueprint (full course)",
        },
    },
    "product": {
        "name": "Liquidity Sweep Blueprint",
        "type": "course",
        "price": 497,
        "url": "https://example-trading.com/blueprint",
        "description": "A twelve-module video course on institutional order-flow trading.",
        "ai_extracted_data": {
            "brand_identifiers": ["Liquidity Sweep Blueprint"],
            "unique_phrases": ["exact order-block entries we use live"],
            "keywords": ["liquidity", "order block", "sweep", "orderflow"],
        },
    },
    "contact": {
        "full_name": "Jordan Reyes",
        "company": "Example Trading LLC",
        "email": "jordan@example-trading.com",
        "phone": "+1 555 0100",
        "address": "100 Market Street, Austin, TX 78701",
    },
}


async def generate_notice(request_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Call the API to build a DMCA notice.

    Args:
        request_data: Infringement, product and contact payload

    Returns:
        Dict[str, Any]: The API response, or an empty dict on error
    """
    async with httpx.AsyncClient() as client:
        response = await client.post(API_URL, json=request_data, timeout=30.0)

        if response.status_code != 200:
            print(f"Error: {response.status_code}")
            print(response.text)
            return {}

        return response.json()


def display_results(results: Dict[str, Any]) -> None:
    if not results:
        return

    target = results["target"]
    quality = results["quality"]

    print("\n====== DMCA NOTICE ======\n")
    print(f"Profile: {results['profile']}")
    print(f"Target: {target['provider']['name']} ({target['type']}, {results['delivery_method']})")
    print(f"Reason: {target['reason']}")
    print(f"Quality: {quality['score']}/100 ({quality['strength']}), passed={quality['passed']}")
    for issue in quality["errors"] + quality["warnings"]:
        print(f"  - {issue['code']}: {issue['message']}")

    print(f"\nSubject: {results['notice']['subject']}\n")
    print(results["notice"]["body"])


async def main(request_data: Dict[str, Any] = None) -> None:
    if request_data is None:
        request_data = SAMPLE_REQUEST

    print("Calling ProductGuard Takedown API...")
    print(f"Infringing URL: {request_data['infringement']['source_url']}")

    results = await generate_notice(request_data)
    display_results(results)


if __name__ == "__main__":
    # Check if custom JSON file path is provided
    if len(sys.argv) > 1:
        try:
            with open(sys.argv[1], 'r') as f:
                custom_data = json.load(f)
            asyncio.run(main(custom_data))
        except Exception as e:
            print(f"Error loading JSON file: {e}")
            sys.exit(1)
    else:
        asyncio.run(main())
