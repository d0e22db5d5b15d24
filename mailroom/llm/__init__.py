"""Gemini model access and the smart-match prompt"""
