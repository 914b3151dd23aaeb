"""Send a 3DS simulation request to a locally running worker."""

import argparse
import asyncio
import json

import httpx


async def simulate(args):
    """POST one request to /simulate-3d and print the AutomationResult."""
    url = f"{args.base_url.rstrip('/')}/simulate-3d"
    payload = {
        "threeDSessionId": args.session_id,
        "otp": args.otp,
        "environment": args.environment,
        "cardnumber": args.card,
        "amount": args.amount,
    }
    if args.success_pattern:
        payload["successPattern"] = args.success_pattern
    if args.callback_base and args.run_key:
        payload["n8nCallbackBase"] = args.callback_base
        payload["runKey"] = args.run_key

    print(f"🔐 Simulating 3DS challenge")
    print(f"   URL: {url}")
    print(f"   Session: {args.session_id}")
    print(f"   Environment: {args.environment}")
    print()

    try:
        async with httpx.AsyncClient(timeout=args.timeout) as client:
            response = await client.post(url, json=payload)

        print(f"📡 Response Status: {response.status_code}")
        print(f"📝 Response Body:")
        print(json.dumps(response.json(), indent=2, ensure_ascii=False))

        if response.status_code == 200 and response.json().get("success"):
            print()
            print("✅ Challenge completed")
        else:
            print()
            print("❌ Challenge did not complete, check server logs")

    except httpx.ConnectError:
        print(f"❌ Could not connect to {args.base_url}")
        print("   Make sure the FastAPI server is running:")
        print("   python -m uvicorn src.app.main:app --reload --port 3002")


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("session_id", help="threeDSessionId from the payment platform")
    parser.add_argument("otp", help="One-time code")
    parser.add_argument("--base-url", default="http://localhost:3002")
    parser.add_argument("--environment", default="stb", choices=["stb", "prp", "prod"])
    parser.add_argument("--card", default="4355084355084358")
    parser.add_argument("--amount", default="1.00")
    parser.add_argument("--success-pattern")
    parser.add_argument("--callback-base")
    parser.add_argument("--run-key")
    parser.add_argument("--timeout", type=float, default=120.0, help="Client timeout in seconds")
    asyncio.run(simulate(parser.parse_args()))


if __name__ == "__main__":
    main()
