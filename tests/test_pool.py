"""Tests for the bounded compositor pool."""

import asyncio

import pytest

from export_engine.render.pool import RendererPool


@pytest.mark.asyncio
class TestRendererPool:
    async def test_compositor_is_reused(self, settings):
        """Returning a compositor makes it available to the next checkout of the same size."""
        pool = RendererPool(settings=settings)
        async with pool.checkout(64, 36) as first:
            pass
        async with pool.checkout(64, 36) as second:
            assert second is first
        assert pool.created == 1
        assert pool.idle_count == 1

    async def test_size_mismatch_creates_new(self, settings):
        pool = RendererPool(settings=settings)
        async with pool.checkout(64, 36) as small:
            pass
        async with pool.checkout(128, 72) as large:
            assert large is not small
            assert (large.width, large.height) == (128, 72)
        assert pool.created == 2

    async def test_checkout_waits_when_exhausted(self, settings):
        """With size 1 a second checkout blocks until the first is returned."""
        pool = RendererPool(size=1, settings=settings)
        order = []

        async def borrow(name: str, hold: float):
            async with pool.checkout(64, 36):
                order.append(f"{name} in")
                await asyncio.sleep(hold)
                order.append(f"{name} out")

        await asyncio.gather(borrow("a", 0.05), borrow("b", 0))
        assert order == ["a in", "a out", "b in", "b out"]

    async def test_checkout_binds_media_dir(self, settings, temp_output_dir):
        pool = RendererPool(settings=settings)
        async with pool.checkout(64, 36, temp_output_dir) as compositor:
            assert compositor.media.media_dir == temp_output_dir

    async def test_compositors_do_not_share_text_renderer(self, settings):
        """Concurrently checked-out compositors render text with their own font caches."""
        pool = RendererPool(size=2, settings=settings)
        async with pool.checkout(64, 36) as first, pool.checkout(64, 36) as second:
            assert first is not second
            assert first.text_renderer is not second.text_renderer
