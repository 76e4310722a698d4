"""Service layer — pipeline orchestration returning ServiceResult.

Services may import from domain, infrastructure, and output serializers.
They must never import from commands.
"""
