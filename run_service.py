#!/usr/bin/env python3
"""
Service Runner Script

Simple script to run the matrix game service during development.

Usage:
    python run_service.py
"""

import asyncio
import os
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from matrix_game.main import main

if __name__ == "__main__":
    print("🎲 Starting Matrix Game service...")
    print("📋 Make sure you have configured your environment variables!")

    if not os.path.exists(".env"):
        print("⚠️  No .env file found, using defaults")
        print("📝 Copy env.example to .env to configure the database and bot token")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Service stopped by user")
    except Exception as e:
        print(f"\n❌ Service failed to start: {e}")
        sys.exit(1)
