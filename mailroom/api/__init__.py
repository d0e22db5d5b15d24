"""Mailroom REST API"""
