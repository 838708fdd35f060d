"""
Pytest configuration and shared fixtures for all tests.

This file is automatically loaded by pytest and makes fixtures
available to all test files.
"""

import sys
import os

# Set AWS region for tests (required by boto3 clients even with moto mocking)
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-west-2')
os.environ.setdefault('AWS_REGION', 'us-west-2')

# Fake credentials so boto3 never looks for real ones
os.environ.setdefault('AWS_ACCESS_KEY_ID', 'testing')
os.environ.setdefault('AWS_SECRET_ACCESS_KEY', 'testing')

# Add ai-chat directory to path so tests can import its modules directly
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'ai-chat')))

# Add tests directory to path for shared fixtures
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from fixtures.sample_data import *  # noqa: E402,F401,F403
