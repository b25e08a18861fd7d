import tempfile
import unittest
from pathlib import Path

from gachabot.catalog import CatalogLoader
from gachabot.seeding import CatalogFileError, catalog_documents, load_catalog_file, seed_store

from support import FIXED_NOW, TempStoreMixin

REPO_ROOT = Path(__file__).resolve().parents[1]


class CatalogDocumentsTests(unittest.TestCase):
    def test_banner_entries_become_subdocuments(self) -> None:
        documents = catalog_documents(
            {
                "banners": {
                    "lab": {
                        "name": "Lab",
                        "entries": {
                            "a": "Common",
                            "b": {"rarity": "epic", "weight": 4, "enabled": False},
                        },
                    }
                }
            }
        )
        self.assertEqual(documents["banners/lab"], {"name": "Lab", "active": False})
        self.assertEqual(documents["banners/lab/entries/a"], {"rarity": "common", "enabled": True, "weight": 1})
        self.assertEqual(documents["banners/lab/entries/b"], {"rarity": "epic", "weight": 4, "enabled": False})

    def test_unknown_rarity_is_rejected(self) -> None:
        with self.assertRaises(CatalogFileError):
            catalog_documents({"banners": {"lab": {"entries": {"a": "mythic"}}}})

    def test_sections_must_be_mappings(self) -> None:
        with self.assertRaises(CatalogFileError):
            catalog_documents({"cosmetics": ["bg_1"]})


class CatalogFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_yaml_timestamps_become_iso_strings(self) -> None:
        path = self.root / "catalog.yaml"
        path.write_text("banners:\n  lab:\n    active: true\n    startAt: 2026-01-01 00:00:00\n", encoding="utf-8")
        documents = catalog_documents(load_catalog_file(path))
        self.assertEqual(documents["banners/lab"]["startAt"], "2026-01-01T00:00:00+00:00")

    def test_invalid_yaml(self) -> None:
        path = self.root / "broken.yaml"
        path.write_text("banners: [unclosed\n", encoding="utf-8")
        with self.assertRaises(CatalogFileError):
            load_catalog_file(path)
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with self.assertRaises(CatalogFileError):
            load_catalog_file(path)


class SeedStoreTests(TempStoreMixin, unittest.IsolatedAsyncioTestCase):
    async def test_example_catalog_seeds_a_drawable_banner(self) -> None:
        store = self.make_store()
        documents = catalog_documents(load_catalog_file(REPO_ROOT / "catalog.example.yaml"))

        changed = await seed_store(store, documents)
        self.assertEqual(sorted(changed), sorted(documents))
        self.assertEqual(await seed_store(store, documents), [])

        loader = CatalogLoader(store)
        banner = await loader.load_active_banner("lab_launch", FIXED_NOW)
        self.assertEqual(banner.refund_for("legendary"), 600)
        pool = await loader.load_compiled_pool("lab_launch")
        self.assertEqual(pool["common"].total_weight, 7)
        self.assertNotIn("avatar_retired", [item_id for item_id, _ in pool["common"].items])
        cosmetic = await loader.load_cosmetic("icon_flame")
        self.assertEqual(cosmetic.cost_in("coins"), 800)


if __name__ == "__main__":
    unittest.main()
