from unittest import mock

from django.core.cache.backends.locmem import LocMemCache
from django.test import SimpleTestCase

from core.cache import ExpiringCache
from core.choices import (
    CLASS_SUBJECTS, SchoolClass, Sex, classes_in_category, normalize_sex,
    subject_codes_for_class, subjects_for_class,
)


class ExpiringCacheTests(SimpleTestCase):
    """Tests for the prefix-scoped expiry cache."""

    def setUp(self):
        self.backend = LocMemCache('expiring-cache-tests', {})
        self.backend.clear()
        self.cache = ExpiringCache('cohorts', default_ttl=10, backend=self.backend)

    def test_get_returns_value_before_expiry(self):
        """Entries are served until their TTL has elapsed."""
        with mock.patch('time.time', return_value=1000.0):
            self.cache.put('marks_S1A_2024_Term1', [1, 2, 3])
        with mock.patch('time.time', return_value=1009.9):
            self.assertEqual(self.cache.get('marks_S1A_2024_Term1'), [1, 2, 3])

    def test_entry_expires_after_ttl(self):
        with mock.patch('time.time', return_value=1000.0):
            self.cache.put('key', 'value')
        with mock.patch('time.time', return_value=1010.0):
            self.assertIsNone(self.cache.get('key'))

    def test_put_ttl_overrides_default(self):
        with mock.patch('time.time', return_value=1000.0):
            self.cache.put('short', 'value', ttl=1)
            self.cache.put('long', 'value')
        with mock.patch('time.time', return_value=1005.0):
            self.assertNotIn('short', self.cache)
            self.assertIn('long', self.cache)

    def test_no_default_ttl_never_expires(self):
        cache = ExpiringCache('forever', backend=self.backend)
        with mock.patch('time.time', return_value=1000.0):
            cache.put('key', 'value')
        with mock.patch('time.time', return_value=1000.0 + 10 ** 6):
            self.assertEqual(cache.get('key'), 'value')

    def test_invalidate_removes_one_key(self):
        self.cache.put('a', 1)
        self.cache.put('b', 2)
        self.cache.invalidate('a')
        self.assertIsNone(self.cache.get('a'))
        self.assertEqual(self.cache.get('b'), 2)

    def test_invalidate_missing_key_is_noop(self):
        self.cache.invalidate('missing')
        self.assertNotIn('missing', self.cache)

    def test_clear(self):
        self.cache.put('a', 1)
        self.cache.put('b', 2)
        self.cache.clear()
        self.assertIsNone(self.cache.get('a'))
        self.assertIsNone(self.cache.get('b'))

    def test_clear_only_drops_own_prefix(self):
        other = ExpiringCache('students', backend=self.backend)
        other.put('a', 'kept')
        self.cache.put('a', 'dropped')
        self.cache.clear()
        self.assertIsNone(self.cache.get('a'))
        self.assertEqual(other.get('a'), 'kept')

    def test_put_replaces_value_and_expiry(self):
        """Putting a key again restarts its TTL."""
        with mock.patch('time.time', return_value=1000.0):
            self.cache.put('key', 'old')
        with mock.patch('time.time', return_value=1008.0):
            self.cache.put('key', 'new')
        with mock.patch('time.time', return_value=1016.0):
            self.assertEqual(self.cache.get('key'), 'new')

    def test_caches_with_same_prefix_share_entries(self):
        """Two owners of the same prefix see each other's writes and invalidations."""
        web = ExpiringCache('cohorts', default_ttl=10, backend=self.backend)
        worker = ExpiringCache('cohorts', default_ttl=10, backend=self.backend)

        web.put('key', 'old')
        self.assertEqual(worker.get('key'), 'old')
        worker.invalidate('key')
        self.assertIsNone(web.get('key'))

        web.put('key', 'old')
        worker.clear()
        self.assertIsNone(web.get('key'))

    def test_values_come_back_as_copies(self):
        self.cache.put('key', {'ENG': 70})
        self.cache.get('key')['ENG'] = 0
        self.assertEqual(self.cache.get('key'), {'ENG': 70})

    def test_uses_django_cache_alias_by_default(self):
        cache = ExpiringCache('alias-test')
        cache.put('key', 'value')
        self.assertEqual(cache.get('key'), 'value')
        cache.clear()


class ClassCatalogueTests(SimpleTestCase):
    """Tests for class codes and their subject lists."""

    def test_every_class_has_subjects(self):
        for class_name in SchoolClass.values:
            self.assertIn(class_name, CLASS_SUBJECTS)
            self.assertTrue(subjects_for_class(class_name))

    def test_subject_counts(self):
        self.assertEqual(len(subjects_for_class('PREP-A')), 6)
        self.assertEqual(len(subjects_for_class('S1A')), 14)
        self.assertEqual(len(subjects_for_class('S2B')), 14)
        self.assertEqual(len(subjects_for_class('S3A')), 10)
        self.assertEqual(len(subjects_for_class('S4B')), 10)

    def test_streams_share_subject_lists(self):
        """Science classes take ADD MATH, arts classes take LIT."""
        self.assertIn('ADD MATH', subject_codes_for_class('S3A'))
        self.assertIn('ADD MATH', subject_codes_for_class('S4A'))
        self.assertIn('LIT', subject_codes_for_class('S3B'))
        self.assertNotIn('LIT', subject_codes_for_class('S3A'))

    def test_subject_codes_are_ordered(self):
        self.assertEqual(subject_codes_for_class('PREP-B'), ['ENG', 'MATH', 'CRE', 'CHEM', 'BIOS', 'PHY'])

    def test_unknown_class_raises(self):
        with self.assertRaises(KeyError):
            subjects_for_class('S9Z')

    def test_classes_in_category(self):
        self.assertEqual(classes_in_category('S1'), ['S1A', 'S1B', 'S1C', 'S1D', 'S1E'])
        self.assertEqual(classes_in_category('PREP'), ['PREP-A', 'PREP-B'])
        self.assertEqual(classes_in_category('S4'), ['S4A', 'S4B'])


class NormalizeSexTests(SimpleTestCase):

    def test_accepted_spellings(self):
        self.assertEqual(normalize_sex('M'), Sex.MALE)
        self.assertEqual(normalize_sex('male'), Sex.MALE)
        self.assertEqual(normalize_sex(' F '), Sex.FEMALE)
        self.assertEqual(normalize_sex('Female'), Sex.FEMALE)

    def test_unrecognised_values(self):
        self.assertEqual(normalize_sex('X'), '')
        self.assertEqual(normalize_sex(''), '')
        self.assertEqual(normalize_sex(None), '')
