"""
Provider adapters

One resilience-wrapped client per backend family:
- Text: OpenAI, Anthropic, Gemini
- Image / video: OpenAI Images, Gemini image models, fal.ai queue jobs
- Speech: ElevenLabs
- Extraction: Supadata web/video readers
"""
