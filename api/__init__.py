"""
Site Monitor web service: HTTP routes and the realtime channel.
"""
