#!/usr/bin/env python3
"""
Billing Bridge API Startup Script

Starts the Razorpay billing bridge FastAPI server for local development.
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the billing bridge API server."""
    print("Starting Billing Bridge API Server...")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("   Webhook URL: http://localhost:8000/razorpay/webhook")
    print("")

    # Check for environment file
    env_file = Path(".env")
    if not env_file.exists():
        print("WARNING: No .env file found!")
        print("   Create a .env file with these variables:")
        print("   DATABASE_URL=sqlite:///./billing.db")
        print("   JWT_SECRET=your-secret-key-here")
        print("   RAZORPAY_KEY_ID=rzp_test_...")
        print("   RAZORPAY_KEY_SECRET=...")
        print("   RAZORPAY_WEBHOOK_SECRET=...")
        print("")

    try:
        uvicorn.run(
            "billing_bridge.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["billing_bridge"],
            log_level="info",
        )
    except KeyboardInterrupt:
        print("\nShutting down billing bridge API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
