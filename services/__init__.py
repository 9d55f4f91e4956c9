"""
Content Autopilot Services

Services for the plan-to-post pipeline:
- plans: Content plans, plan items and their status workflow
- research: Topic generation and research (Perplexity)
- scripts: Short-form script writing (OpenAI)
- video_generation: Sora 2 video jobs (Poyo)
- publisher: Social distribution (Upload-Post)
- automation: Pipeline driver and periodic scheduler
- workspace: User preferences and saved prompts
- api: HTTP surface
"""
