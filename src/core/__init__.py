"""
Core protocol engines
"""
