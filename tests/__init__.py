"""
Test Suite Initialization

goalengine test configuration.
"""
