"""
Base Tool - Abstract base class for tools the host can invoke.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


@dataclass
class ToolResult:
    """Result from tool execution."""
    
    success: bool
    data: Any = None
    error: Optional[str] = None
    execution_time_ms: float = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return not self.success

    @property
    def content(self) -> str:
        """Human-readable content: the data on success, the error otherwise."""
        if self.success:
            return "" if self.data is None else str(self.data)
        return self.error or ""
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
            "metadata": self.metadata,
        }


class ToolDefinition(BaseModel):
    """Tool definition for registration."""
    
    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)  # JSON Schema
    server: Optional[str] = None  # MCP server the tool comes from, if any

    def to_host_schema(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


class BaseTool(ABC):
    """
    Abstract base class for tools.
    
    All tools must implement:
    - definition: Tool metadata
    - execute: Core execution logic
    """

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str:
        return self.definition.description

    @property
    def schema(self) -> Dict[str, Any]:
        return self.definition.parameters
    
    @property
    @abstractmethod
    def definition(self) -> ToolDefinition:
        """Get tool definition."""
        pass
    
    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult:
        """
        Execute the tool.
        
        Args:
            **kwargs: Tool-specific parameters
            
        Returns:
            ToolResult with execution outcome
        """
        pass
    
    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        """
        Validate input parameters.
        
        Args:
            params: Input parameters
            
        Returns:
            Error message if invalid, None if valid
        """
        schema = self.definition.parameters or {}
        required = schema.get("required", []) or []
        
        for param in required:
            if param not in params:
                return f"Missing required parameter: {param}"
        
        return None
    
    async def safe_execute(self, **kwargs) -> ToolResult:
        """Execute with validation and error handling."""
        start_time = time.time()
        
        error = self.validate_params(kwargs)
        if error:
            return ToolResult(
                success=False,
                error=error,
                execution_time_ms=(time.time() - start_time) * 1000
            )
        
        try:
            result = await self.execute(**kwargs)
            result.execution_time_ms = (time.time() - start_time) * 1000
            return result
        except Exception as e:
            return ToolResult(
                success=False,
                error=str(e),
                execution_time_ms=(time.time() - start_time) * 1000
            )
