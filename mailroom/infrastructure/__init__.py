"""Infrastructure - settings, database, LLM budget"""
