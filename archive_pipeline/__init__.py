"""
Core package for the archive transcription pipeline.

This package contains the components used by the HTTP entrypoint to pull a
finished video-conference archive out of Cloud Storage, split individual
stream archives into their media entries, extract mono FLAC audio, run
speech recognition, and write transcripts plus a metadata marker back to
storage.
"""
