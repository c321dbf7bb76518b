#!/usr/bin/env python
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

from utils.square_client import SquarePaymentSource, get_square_base_url

def check_square_connection():
    source = SquarePaymentSource()
    print(f"Testing Square connection...")
    print(f"Environment: {source.environment}")

    if not source.is_configured:
        print("Error: SQUARE_ACCESS_TOKEN is not set in .env file.")
        return 1

    print(f"Sending request to: {get_square_base_url(source.environment)}/v2/locations")
    res = source.test_connection()
    if not res.success:
        print(f"Connection Failed! {res.error}")
        return 1

    print("Connection Successful!")
    print(f"Found {len(res.value)} location(s):")
    for loc in res.value:
        print(f" - {loc.get('name')} (ID: {loc.get('id')})")
    return 0

if __name__ == "__main__":
    sys.exit(check_square_connection())
