"""
Audio handling: transcription and format conversion.
"""
