"""
HeyGen avatar video client.
"""
