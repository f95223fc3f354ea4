from macro_arena.data.ticks import load_ticks

__all__ = ["load_ticks"]
