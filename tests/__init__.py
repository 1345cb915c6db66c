"""
Orthodontic Scheduling Test Suite
"""
