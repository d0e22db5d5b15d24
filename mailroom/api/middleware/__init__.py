"""API middleware"""
