#!/usr/bin/env python3
"""
Smoke Test Script

Validates configuration and connectivity without placing a real call.

Checks:
1. Dependencies are importable
2. Environment variables are set (without printing secrets)
3. Groq model exists via API (when LLM_PROVIDER=groq)
4. Knowledge base loads
5. FastAPI app starts and /health returns OK
"""

import asyncio
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def print_header(text: str) -> None:
    """Print a section header."""
    print(f"\n{'=' * 50}")
    print(f" {text}")
    print('=' * 50)


def print_ok(text: str) -> None:
    """Print success message."""
    print(f"  [OK] {text}")


def print_error(text: str) -> None:
    """Print error message."""
    print(f"  [ERR] {text}")


def print_warn(text: str) -> None:
    """Print warning message."""
    print(f"  [WARN] {text}")


def check_env_vars() -> bool:
    """Check that required environment variables are set."""
    print_header("Checking Environment Variables")

    from dotenv import load_dotenv
    load_dotenv()

    provider = os.getenv("LLM_PROVIDER", "groq").strip().lower()
    required_vars = ["DEEPGRAM_API_KEY"]
    if provider == "openai":
        required_vars += ["OPENAI_API_KEY", "OPENAI_MODEL"]
    else:
        required_vars += ["GROQ_API_KEY", "GROQ_MODEL"]

    optional_vars = [
        "PORT",
        "LOG_LEVEL",
        "BUSINESS_NAME",
        "AGENT_NAME",
        "TTS_PROVIDER",
        "KNOWLEDGE_BASE_PATH",
        "BOOKING_SLOT_TEMPLATES",
        "BOOKING_DEFAULT_BUSY",
    ]

    all_ok = True

    for var in required_vars:
        value = os.getenv(var)
        if value:
            if var.endswith("_MODEL"):
                print_ok(f"{var}: {value}")
            else:
                # Mask sensitive values
                masked = value[:4] + "..." + value[-4:] if len(value) > 8 else "****"
                print_ok(f"{var}: {masked}")
        else:
            print_error(f"{var}: NOT SET")
            all_ok = False

    print("\nOptional variables:")
    for var in optional_vars:
        value = os.getenv(var)
        if value:
            print_ok(f"{var}: {value}")
        else:
            print_warn(f"{var}: not set (using default)")

    return all_ok


async def check_groq_model() -> bool:
    """Validate Groq model exists."""
    print_header("Validating Groq Model")

    import httpx
    from dotenv import load_dotenv
    load_dotenv()

    if os.getenv("LLM_PROVIDER", "groq").strip().lower() != "groq":
        print_warn("LLM_PROVIDER is not groq, skipping")
        return True

    from src.receptionist.llm import GROQ_BASE_URL

    api_key = os.getenv("GROQ_API_KEY")
    model_name = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")

    if not api_key:
        print_error("GROQ_API_KEY not set")
        return False

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{GROQ_BASE_URL}/models",
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=10.0,
            )

            if response.status_code != 200:
                print_error(f"API returned status {response.status_code}")
                return False

            data = response.json()
            models = [m.get("id") for m in data.get("data", [])]

            if model_name in models:
                print_ok(f"Model '{model_name}' exists")
                return True
            else:
                print_error(f"Model '{model_name}' NOT FOUND")
                print("\n  Available models:")
                for m in sorted(str(m) for m in models)[:10]:
                    print(f"    - {m}")
                return False

    except httpx.RequestError as e:
        print_error(f"Failed to connect to Groq API: {e}")
        return False


def check_knowledge_base() -> bool:
    """Check the knowledge base loads and has entries."""
    print_header("Checking Knowledge Base")

    from src.receptionist.knowledge_base import KnowledgeBase

    kb = KnowledgeBase.load(os.getenv("KNOWLEDGE_BASE_PATH") or None)
    if not len(kb):
        print_error("Knowledge base is empty")
        return False

    print_ok(f"{len(kb)} entries")
    print_ok(f"Services: {kb.list_services()}")
    return True


def check_health_endpoint() -> bool:
    """Check that the FastAPI /health endpoint works."""
    print_header("Testing Health Endpoint")

    try:
        from fastapi.testclient import TestClient
        from server.app import app

        with TestClient(app) as client:
            response = client.get("/health")

        if response.status_code == 200:
            data = response.json()
            if data.get("status") == "healthy":
                print_ok("Health endpoint returned healthy")
                return True
            else:
                print_error(f"Unexpected response: {data}")
                return False
        else:
            print_error(f"Health endpoint returned status {response.status_code}")
            return False

    except SystemExit as e:
        print_error(f"Server startup exited: {e}")
        return False
    except Exception as e:
        print_error(f"Failed to test health endpoint: {e}")
        return False


def check_dependencies() -> bool:
    """Check that required dependencies are importable."""
    print_header("Checking Dependencies")

    dependencies = [
        ("fastapi", "FastAPI"),
        ("uvicorn", "Uvicorn"),
        ("websockets", "WebSockets"),
        ("openai", "OpenAI SDK"),
        ("instructor", "Instructor"),
        ("structlog", "Structlog"),
        ("pydantic", "Pydantic"),
        ("msgspec", "msgspec"),
        ("numpy", "NumPy"),
        ("httpx", "HTTPX"),
    ]

    all_ok = True

    for module, name in dependencies:
        try:
            __import__(module)
            print_ok(f"{name}")
        except ImportError as e:
            print_error(f"{name}: {e}")
            all_ok = False

    return all_ok


async def main() -> int:
    """Run all smoke tests."""
    print("\n" + "=" * 50)
    print(" VOICE LEAD AGENT - SMOKE TEST")
    print("=" * 50)

    results = []

    # Run checks
    results.append(("Dependencies", check_dependencies()))
    results.append(("Environment Variables", check_env_vars()))
    results.append(("Groq Model", await check_groq_model()))
    results.append(("Knowledge Base", check_knowledge_base()))
    results.append(("Health Endpoint", check_health_endpoint()))

    # Summary
    print_header("Summary")

    all_passed = True
    for name, passed in results:
        if passed:
            print_ok(name)
        else:
            print_error(name)
            all_passed = False

    print()

    if all_passed:
        print("[OK] All checks passed!")
        print("\nNext steps:")
        print("  1. Run 'python -m server.app' to start the server")
        print("  2. Stream PCM16 16kHz mono audio to ws://localhost:<PORT>/ws")
        return 0
    else:
        print("[ERR] Some checks failed. Please fix the issues above.")
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
