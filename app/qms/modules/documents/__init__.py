"""
Document lifecycle module.

- Documents are instantiated from a template and edited as a JSON content tree
- Review: assign reviewers, then approve (signature) or reject (comments)
- Approved documents are locked; ``complete`` closes them out
- Every transition goes through ``WorkflowEngine`` and a ``DocumentStore``
"""
