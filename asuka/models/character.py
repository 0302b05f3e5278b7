"""Character profiles that give an agent its persona"""
import tomllib
from pathlib import Path
from typing import Union

from pydantic import BaseModel, Field


class Character(BaseModel):
    """Persona used to build the reasoning backend's system prompt"""
    name: str
    preamble: str = Field(..., description="Standing instructions describing the character")
    topics: list[str] = Field(default_factory=list)
    adjectives: list[str] = Field(default_factory=list)

    @classmethod
    def from_toml(cls, path: Union[str, Path]) -> "Character":
        """Load a character profile from a TOML file"""
        with open(path, "rb") as handle:
            data = tomllib.load(handle)
        return cls.model_validate(data)

    def system_prompt(self) -> str:
        lines = [self.preamble.strip(), "", f"Your name: {self.name}"]
        if self.adjectives:
            lines.append(f"You are: {', '.join(self.adjectives)}")
        if self.topics:
            lines.append(f"You like to talk about: {', '.join(self.topics)}")
        return "\n".join(lines)
