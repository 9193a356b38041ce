"""Tokens, sessions and the authorization gate"""
