"""FrameRelay models package.

  - error_page.py — builders for the caller-facing error responses (styled HTML
                    pages and the plain-text missing-parameter reply)
"""
