"""
Stream YouTube videos and Shorts as MP4 downloads.
"""
