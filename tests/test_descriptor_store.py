"""
Unit tests for DescriptorStore module.
"""

import json
import os
import pickle
import shutil
import sys
import tempfile
import unittest
from unittest import mock

import numpy as np

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_attendance.descriptor_store import DescriptorStore
from face_attendance.embeddings import EMBEDDING_SIZE


class TestDescriptorStore(unittest.TestCase):
    """Test cases for DescriptorStore class."""
    
    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()
        self.database_file = os.path.join(self.test_dir, 'data', 'faces.pkl')
        self.config = {
            'storage': {
                'database_file': self.database_file
            }
        }
        self.rng = np.random.default_rng(42)
    
    def tearDown(self):
        """Clean up test fixtures."""
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)
    
    def random_embedding(self):
        return self.rng.normal(0, 0.1, size=EMBEDDING_SIZE)
    
    def test_store_initialization(self):
        """Test that an empty store initializes and creates its directory."""
        store = DescriptorStore(self.config)
        self.assertEqual(store.count(), 0)
        self.assertEqual(store.all(), [])
        self.assertTrue(os.path.isdir(os.path.dirname(self.database_file)))
    
    def test_put_and_get(self):
        """Test storing and reading a descriptor."""
        store = DescriptorStore(self.config)
        embedding = self.random_embedding()
        
        self.assertTrue(store.put('S1', 'Ada Lovelace', embedding))
        
        descriptor = store.get('S1')
        self.assertIsNotNone(descriptor)
        self.assertEqual(descriptor.identity_id, 'S1')
        self.assertEqual(descriptor.display_name, 'Ada Lovelace')
        self.assertTrue(np.array_equal(descriptor.embedding, embedding))
        self.assertEqual(descriptor.enrolled_at, descriptor.last_updated_at)
        self.assertTrue(store.has('S1'))
        self.assertFalse(store.has('S2'))
        self.assertIsNone(store.get('S2'))
    
    def test_put_replaces_existing_identity(self):
        """Test that re-enrolling an identity replaces its descriptor."""
        store = DescriptorStore(self.config)
        v1 = self.random_embedding()
        v2 = self.random_embedding()
        
        store.put('S1', 'Ada', v1)
        store.put('S2', 'Grace', self.random_embedding())
        first = store.get('S1')
        count = store.count()
        
        self.assertTrue(store.put('S1', 'Ada L.', v2))
        
        self.assertEqual(store.count(), count)
        self.assertEqual([d.identity_id for d in store.all()].count('S1'), 1)
        replaced = store.get('S1')
        self.assertTrue(np.array_equal(replaced.embedding, v2))
        self.assertEqual(replaced.display_name, 'Ada L.')
        self.assertEqual(replaced.enrolled_at, first.enrolled_at)
        self.assertGreaterEqual(replaced.last_updated_at, first.last_updated_at)
    
    def test_rejects_wrong_length(self):
        """Test that embeddings of the wrong size are rejected."""
        store = DescriptorStore(self.config)
        self.assertFalse(store.put('S1', 'Ada', np.zeros(127)))
        self.assertFalse(store.put('S1', 'Ada', np.zeros((2, 64))))
        self.assertEqual(store.count(), 0)
    
    def test_rejects_non_finite_values(self):
        """Test that NaN embeddings are rejected."""
        store = DescriptorStore(self.config)
        embedding = self.random_embedding()
        embedding[5] = np.nan
        self.assertFalse(store.put('S1', 'Ada', embedding))
        self.assertFalse(store.put('', 'Nobody', self.random_embedding()))
        self.assertEqual(store.count(), 0)

    def test_rejects_non_string_identity(self):
        """Test that a non-string id is refused and the database stays usable."""
        store = DescriptorStore(self.config)
        self.assertFalse(store.put(42, 'Bob', self.random_embedding()))
        self.assertFalse(store.put(None, 'Bob', self.random_embedding()))

        reopened = DescriptorStore(self.config)
        self.assertEqual(reopened.count(), 0)
        self.assertTrue(reopened.put('S2', 'Grace', self.random_embedding()))
        self.assertEqual(DescriptorStore(self.config).count(), 1)

    def test_stored_embedding_is_read_only(self):
        """Test that stored embeddings cannot be mutated in place."""
        store = DescriptorStore(self.config)
        store.put('S1', 'Ada', self.random_embedding())
        with self.assertRaises(ValueError):
            store.get('S1').embedding[0] = 1.0
    
    def test_remove(self):
        """Test removing descriptors."""
        store = DescriptorStore(self.config)
        store.put('S1', 'Ada', self.random_embedding())
        
        self.assertTrue(store.remove('S1'))
        self.assertFalse(store.remove('S1'))
        self.assertEqual(store.count(), 0)
    
    def test_persistence_round_trip_is_lossless(self):
        """Test that a new store instance reads back identical embeddings."""
        store = DescriptorStore(self.config)
        embeddings = {f"S{i}": self.random_embedding() for i in range(3)}
        for identity_id, embedding in embeddings.items():
            store.put(identity_id, f"Student {identity_id}", embedding)
        
        reloaded = DescriptorStore(self.config)
        
        self.assertEqual(reloaded.count(), 3)
        for identity_id, embedding in embeddings.items():
            self.assertTrue(np.array_equal(reloaded.get(identity_id).embedding, embedding))
    
    def test_sees_writes_from_another_instance(self):
        """Test that reads pick up changes made through another store."""
        reader = DescriptorStore(self.config)
        writer = DescriptorStore(self.config)
        self.assertEqual(reader.count(), 0)
        
        writer.put('S1', 'Ada', self.random_embedding())
        
        self.assertEqual(reader.count(), 1)
        self.assertTrue(reader.has('S1'))
    
    def test_write_failure_leaves_previous_state(self):
        """Test that a failed write reports failure without partial changes."""
        store = DescriptorStore(self.config)
        original = self.random_embedding()
        store.put('S1', 'Ada', original)
        
        with mock.patch('face_attendance.descriptor_store.pickle.dump',
                        side_effect=OSError('disk full')):
            self.assertFalse(store.put('S1', 'Ada', self.random_embedding()))
            self.assertFalse(store.put('S2', 'Grace', self.random_embedding()))
            self.assertFalse(store.remove('S1'))
        
        self.assertEqual(store.count(), 1)
        self.assertTrue(np.array_equal(store.get('S1').embedding, original))
        self.assertEqual(os.listdir(os.path.dirname(self.database_file)), ['faces.pkl'])
        
        reloaded = DescriptorStore(self.config)
        self.assertTrue(np.array_equal(reloaded.get('S1').embedding, original))
    
    def test_corrupt_database_reads_as_failure(self):
        """Test that an unreadable database yields empty results."""
        store = DescriptorStore(self.config)
        store.put('S1', 'Ada', self.random_embedding())
        
        with open(self.database_file, 'wb') as f:
            f.write(b'not a pickle at all')
        
        self.assertFalse(store.load_database())
        self.assertEqual(store.all(), [])
        self.assertIsNone(store.get('S1'))
        self.assertFalse(store.put('S2', 'Grace', self.random_embedding()))
    
    def test_database_file_format(self):
        """Test the persisted structure."""
        store = DescriptorStore(self.config)
        store.put('S1', 'Ada', self.random_embedding())
        
        with open(self.database_file, 'rb') as f:
            data = pickle.load(f)
        
        self.assertEqual(data['embedding_dim'], EMBEDDING_SIZE)
        self.assertEqual(len(data['descriptors']), 1)
        self.assertEqual(data['descriptors'][0]['identity_id'], 'S1')
        self.assertEqual(len(data['descriptors'][0]['embedding']), EMBEDDING_SIZE)
    
    def test_export_import_round_trip(self):
        """Test exporting to JSON and importing into another store."""
        store = DescriptorStore(self.config)
        embedding = self.random_embedding()
        store.put('S1', 'Ada', embedding)
        store.put('S2', 'Grace', self.random_embedding())
        
        exported = store.export_json()
        entries = json.loads(exported)
        self.assertEqual({e['identity_id'] for e in entries}, {'S1', 'S2'})
        
        other = DescriptorStore({'storage': {'database_file': os.path.join(self.test_dir, 'other.pkl')}})
        other.put('S9', 'Old', self.random_embedding())
        
        self.assertTrue(other.import_json(exported))
        self.assertEqual(other.count(), 2)
        self.assertFalse(other.has('S9'))
        self.assertTrue(np.array_equal(other.get('S1').embedding, embedding))
        self.assertEqual(other.get('S1').enrolled_at, store.get('S1').enrolled_at)
    
    def test_import_rejects_invalid_data(self):
        """Test that invalid imports leave the database untouched."""
        store = DescriptorStore(self.config)
        store.put('S1', 'Ada', self.random_embedding())
        
        bad_entry = json.loads(store.export_json())
        bad_entry[0]['embedding'] = bad_entry[0]['embedding'][:10]
        
        self.assertFalse(store.import_json('{not json'))
        self.assertFalse(store.import_json(json.dumps({'identity_id': 'S1'})))
        self.assertFalse(store.import_json(json.dumps(bad_entry)))
        self.assertEqual(store.count(), 1)
    
    def test_clear(self):
        """Test clearing the database."""
        store = DescriptorStore(self.config)
        store.put('S1', 'Ada', self.random_embedding())
        store.put('S2', 'Grace', self.random_embedding())
        
        self.assertTrue(store.clear())
        self.assertEqual(store.count(), 0)
        self.assertEqual(DescriptorStore(self.config).count(), 0)
    
    def test_get_statistics(self):
        """Test getting statistics."""
        store = DescriptorStore(self.config)
        
        stats = store.get_statistics()
        self.assertEqual(stats['total_descriptors'], 0)
        self.assertEqual(stats['embedding_dimension'], EMBEDDING_SIZE)
        self.assertNotIn('last_updated', stats)
        
        store.put('S1', 'Ada', self.random_embedding())
        stats = store.get_statistics()
        self.assertEqual(stats['total_descriptors'], 1)
        self.assertIn('last_updated', stats)


if __name__ == '__main__':
    unittest.main()
