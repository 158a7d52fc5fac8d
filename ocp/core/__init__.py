"""Core auction engine: registry, bid book, oblivious sort, clearing, settlement"""
