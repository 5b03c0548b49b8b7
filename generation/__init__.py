"""
Quiz Question Generation Pipeline
generation/

Steps (per quiz):
1. Fetch            - download the quiz PDF from object storage
2. Sample           - pick clusters of consecutive pages (ingestion.page_sampler)
3. Render           - rasterize cluster pages to PNG (ingestion.page_renderer)
4. Generate         - GPT-4o vision call per cluster, parse JSON questions
5. Balance answers  - balanced correct-answer plan + distractor shuffle
6. Persist          - batch insert into the question table
7. Cleanup          - delete the PDF and rendered images
8. Usage Tracker    - accumulate token usage and estimated cost
"""
